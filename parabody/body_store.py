from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional, Tuple

import numpy as np
import torch

from .structures import BODY_FIELDS, as_body_array, records_to_tensor, rows_to_records


DEFAULT_CAPACITY = 65536


class SourceBuffer(Enum):
    """Which of the two buffers is bound as the read-only input this tick."""

    A = 0
    B = 1

    def other(self) -> "SourceBuffer":
        return SourceBuffer.B if self is SourceBuffer.A else SourceBuffer.A


class BodyStore:
    """
    Two fixed-capacity body buffers with a role tag.

    Each buffer is a (capacity, 8) float32 tensor whose rows are byte-for-byte
    the 32-byte Body record: [px, py, pz, mass, vx, vy, vz, mu]. The buffer
    named by `source` is the previous state (read-only during a tick); the
    other one receives the next state. `swap()` flips the roles and must only
    be called once a tick has fully completed.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY, device=None):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        if device is None:
            device = torch.device("cpu")
        self.capacity = int(capacity)
        self.device = torch.device(device)
        self.buffers: Tuple[torch.Tensor, torch.Tensor] = (
            torch.zeros((self.capacity, BODY_FIELDS), dtype=torch.float32, device=self.device),
            torch.zeros((self.capacity, BODY_FIELDS), dtype=torch.float32, device=self.device),
        )
        self.source = SourceBuffer.A

    @property
    def read_buffer(self) -> torch.Tensor:
        return self.buffers[self.source.value]

    @property
    def write_buffer(self) -> torch.Tensor:
        return self.buffers[self.source.other().value]

    def buffer(self, which: SourceBuffer) -> torch.Tensor:
        return self.buffers[which.value]

    def swap(self) -> SourceBuffer:
        self.source = self.source.other()
        return self.source

    def assert_disjoint(self) -> None:
        a, b = self.buffers
        if a.untyped_storage().data_ptr() == b.untyped_storage().data_ptr():
            raise RuntimeError("body buffers A and B alias the same storage")

    def write_bodies(self, bodies, start: int = 0, target: Optional[SourceBuffer] = None) -> int:
        """Upload bodies into `target` (default: the current read buffer)."""
        records = as_body_array(bodies)
        count = records.shape[0]
        if start < 0 or start + count > self.capacity:
            raise ValueError(
                f"cannot write {count} bodies at offset {start} into a buffer of capacity {self.capacity}"
            )
        if not np.all(np.isfinite(records["mu"])) or np.any(records["mu"] < 0.0):
            raise ValueError("mu must be finite and non-negative for every body")
        buf = self.buffer(target if target is not None else self.source)
        buf[start : start + count] = records_to_tensor(records, device=self.device)
        return count

    def read_bodies(self, count: Optional[int] = None, which: Optional[SourceBuffer] = None) -> np.ndarray:
        """Read back `count` records (default: all) from `which` (default: read buffer)."""
        buf = self.buffer(which if which is not None else self.source)
        if count is None:
            count = self.capacity
        if count < 0 or count > self.capacity:
            raise ValueError(f"count must be in [0, {self.capacity}], got {count}")
        return rows_to_records(buf[:count])

    def to_bytes(self, which: Optional[SourceBuffer] = None) -> bytes:
        return self.read_bodies(which=which).tobytes()

    def clear(self) -> None:
        for buf in self.buffers:
            buf.zero_()
        self.source = SourceBuffer.A

    def snapshot(self) -> Dict[str, Any]:
        return {
            "capacity": self.capacity,
            "source": self.source.name,
            "buffer_a": self.buffers[0].detach().cpu().clone(),
            "buffer_b": self.buffers[1].detach().cpu().clone(),
        }

    def restore(self, state: Dict[str, Any]) -> None:
        if int(state["capacity"]) != self.capacity:
            raise ValueError(
                f"snapshot capacity {state['capacity']} does not match store capacity {self.capacity}"
            )
        for buf, key in zip(self.buffers, ("buffer_a", "buffer_b")):
            data = torch.as_tensor(state[key], dtype=torch.float32)
            if tuple(data.shape) != tuple(buf.shape):
                raise ValueError(f"snapshot {key} has shape {tuple(data.shape)}, expected {tuple(buf.shape)}")
            buf.copy_(data.to(self.device))
        self.source = SourceBuffer[state["source"]]

    def __repr__(self):
        return f"BodyStore(capacity={self.capacity}, device={self.device}, source={self.source.name})"
