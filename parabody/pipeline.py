from __future__ import annotations

from typing import Callable, Optional

import numpy as np
import torch

from .body_store import DEFAULT_CAPACITY, BodyStore, SourceBuffer
from .config import Config
from .kernel import (
    DEFAULT_SOFTENING,
    DEFAULT_WORKGROUP_SIZE,
    check_pair_policy,
    integrate,
)
from .structures import StepConfig, as_body_array


TickCallback = Callable[["Pipeline", int], None]


class Pipeline:
    """
    Host side of the simulation: owns the double buffer and the step
    uniform, dispatches the integrator once per tick and swaps roles.

    Typical use:

        pipeline = Pipeline.create(capacity=100)
        pipeline.set_dt(1e-3)
        pipeline.write_bodies(bodies)
        pipeline.submit_and_block(1000)
        out = pipeline.read_bodies()
    """

    def __init__(
        self,
        store: BodyStore,
        softening: float = DEFAULT_SOFTENING,
        pair_policy: str = "skip",
        workgroup_size: int = DEFAULT_WORKGROUP_SIZE,
    ):
        if softening < 0:
            raise ValueError(f"softening must be >= 0, got {softening}")
        if workgroup_size < 1:
            raise ValueError(f"workgroup_size must be >= 1, got {workgroup_size}")
        store.assert_disjoint()
        self.store = store
        self.softening = float(softening)
        self.pair_policy = check_pair_policy(pair_policy)
        self.workgroup_size = int(workgroup_size)
        self._num_bodies = 0
        self._dt: Optional[float] = None
        self.tick = 0
        self.time = 0.0

    @classmethod
    def create(
        cls,
        capacity: int = DEFAULT_CAPACITY,
        device=None,
        softening: float = DEFAULT_SOFTENING,
        pair_policy: str = "skip",
        workgroup_size: int = DEFAULT_WORKGROUP_SIZE,
    ) -> "Pipeline":
        store = BodyStore(capacity=capacity, device=device)
        return cls(store, softening=softening, pair_policy=pair_policy, workgroup_size=workgroup_size)

    @classmethod
    def from_config(cls, config: Config, device: Optional[torch.device] = None) -> "Pipeline":
        pipeline = cls.create(
            capacity=config.capacity,
            device=device or config.resolve_device(),
            softening=config.softening,
            pair_policy=config.pair_policy,
            workgroup_size=config.workgroup_size,
        )
        pipeline.set_dt(config.dt)
        return pipeline

    # ------------------------------------------------------------------

    @property
    def capacity(self) -> int:
        return self.store.capacity

    @property
    def device(self) -> torch.device:
        return self.store.device

    @property
    def source(self) -> SourceBuffer:
        return self.store.source

    @property
    def num_bodies(self) -> int:
        return self._num_bodies

    @property
    def dt(self) -> Optional[float]:
        return self._dt

    def set_dt(self, dt: float) -> None:
        dt = float(dt)
        if not np.isfinite(dt) or dt <= 0.0:
            raise ValueError(f"dt must be a positive finite number, got {dt}")
        self._dt = dt

    def set_num_bodies(self, num_bodies: int) -> None:
        num_bodies = int(num_bodies)
        if num_bodies < 0 or num_bodies > self.capacity:
            raise ValueError(f"num_bodies={num_bodies} outside [0, {self.capacity}]")
        self._num_bodies = num_bodies

    def step_config(self) -> StepConfig:
        if self._dt is None:
            raise RuntimeError("dt has not been set; call set_dt() before dispatching")
        step = StepConfig(num_bodies=self._num_bodies, dt=self._dt)
        step.validate(self.capacity)
        return step

    # ------------------------------------------------------------------

    def _check_upload(self, count: int, num_bodies: Optional[int]) -> int:
        if count > self.capacity:
            raise ValueError(f"cannot write {count} bodies into a buffer of capacity {self.capacity}")
        active = count if num_bodies is None else int(num_bodies)
        if active < 0 or active > self.capacity:
            raise ValueError(f"num_bodies={active} outside [0, {self.capacity}]")
        return active

    def write_bodies(
        self,
        bodies,
        num_bodies: Optional[int] = None,
        target: Optional[SourceBuffer] = None,
    ) -> int:
        """Upload initial conditions into `target` (default: the current read buffer)."""
        records = as_body_array(bodies)
        active = self._check_upload(records.shape[0], num_bodies)
        count = self.store.write_bodies(records, target=target)
        self._num_bodies = active
        return count

    def read_bodies(self, count: Optional[int] = None) -> np.ndarray:
        return self.store.read_bodies(self._num_bodies if count is None else count)

    def _synchronize(self) -> None:
        if self.device.type == "cuda":
            torch.cuda.synchronize(self.device)

    def step(self) -> int:
        """Run one tick and swap buffer roles. Returns the new tick count."""
        step = self.step_config()
        integrate(
            self.store.read_buffer,
            self.store.write_buffer,
            step,
            softening=self.softening,
            pair_policy=self.pair_policy,
            workgroup_size=self.workgroup_size,
        )
        self._synchronize()
        self.store.swap()
        self.tick += 1
        self.time += step.dt
        return self.tick

    def submit_and_block(
        self,
        steps: int,
        callback: Optional[TickCallback] = None,
        every: int = 1,
    ) -> int:
        """Run `steps` ticks back to back, calling `callback` every `every` ticks."""
        if steps < 0:
            raise ValueError(f"steps must be >= 0, got {steps}")
        if every < 1:
            raise ValueError(f"every must be >= 1, got {every}")
        for _ in range(int(steps)):
            tick = self.step()
            if callback is not None and tick % every == 0:
                callback(self, tick)
        return self.tick

    def submit_and_wait(self, bodies, src: SourceBuffer = SourceBuffer.A) -> np.ndarray:
        """
        One-shot helper: upload `bodies` into buffer `src`, run a single tick
        reading from it and return the contents of the other buffer.
        """
        records = as_body_array(bodies)
        self.write_bodies(records, target=src)
        self.store.source = src
        self.step()
        return self.store.read_bodies(self.capacity, which=src.other())

    def reset(self) -> None:
        self.store.clear()
        self._num_bodies = 0
        self.tick = 0
        self.time = 0.0

    def __repr__(self):
        return (
            f"Pipeline(capacity={self.capacity}, num_bodies={self._num_bodies}, dt={self._dt}, "
            f"softening={self.softening}, pair_policy={self.pair_policy!r}, "
            f"workgroup_size={self.workgroup_size}, tick={self.tick}, device={self.device})"
        )
