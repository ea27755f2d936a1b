from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence, Tuple

import numpy as np
import torch


# Device record layout: vec3 fields start on a 16-byte boundary, the scalar
# after each vec3 fills its padding lane.
BODY_DTYPE = np.dtype(
    {
        "names": ["position", "mass", "velocity", "mu"],
        "formats": [("<f4", (3,)), "<f4", ("<f4", (3,)), "<f4"],
        "offsets": [0, 12, 16, 28],
        "itemsize": 32,
    }
)
BODY_FIELDS = BODY_DTYPE.itemsize // 4  # float32 lanes per record

# Column slices into a (N, BODY_FIELDS) float32 view of the record array.
POSITION = slice(0, 3)
MASS = 3
VELOCITY = slice(4, 7)
MU = 7

STEP_CONFIG_DTYPE = np.dtype(
    {
        "names": ["num_bodies", "dt"],
        "formats": ["<u4", "<f4"],
        "offsets": [0, 4],
        "itemsize": 16,
    }
)


@dataclass
class Body:
    """A single point mass, in host-side form.

    `mu` is the source strength felt by other bodies (G * m). `mass` is
    carried through the kernel as a per-body tick counter.
    """

    position: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    velocity: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    mu: float = 0.0
    mass: float = 0.0

    def to_record(self) -> np.ndarray:
        rec = np.zeros((), dtype=BODY_DTYPE)
        rec["position"] = self.position
        rec["velocity"] = self.velocity
        rec["mu"] = self.mu
        rec["mass"] = self.mass
        return rec

    @classmethod
    def from_record(cls, rec) -> "Body":
        return cls(
            position=tuple(float(x) for x in rec["position"]),
            velocity=tuple(float(x) for x in rec["velocity"]),
            mu=float(rec["mu"]),
            mass=float(rec["mass"]),
        )


@dataclass
class StepConfig:
    """Per-tick uniform: active body count and integration step."""

    num_bodies: int
    dt: float

    def validate(self, capacity: int) -> None:
        if self.num_bodies < 0:
            raise ValueError(f"num_bodies must be >= 0, got {self.num_bodies}")
        if self.num_bodies > capacity:
            raise ValueError(f"num_bodies={self.num_bodies} exceeds buffer capacity {capacity}")
        if not np.isfinite(self.dt) or self.dt <= 0.0:
            raise ValueError(f"dt must be a positive finite number, got {self.dt}")

    def to_record(self) -> np.ndarray:
        rec = np.zeros((), dtype=STEP_CONFIG_DTYPE)
        rec["num_bodies"] = self.num_bodies
        rec["dt"] = self.dt
        return rec

    def to_bytes(self) -> bytes:
        return self.to_record().tobytes()

    @classmethod
    def from_bytes(cls, data: bytes) -> "StepConfig":
        if len(data) != STEP_CONFIG_DTYPE.itemsize:
            raise ValueError(
                f"step config must be {STEP_CONFIG_DTYPE.itemsize} bytes, got {len(data)}"
            )
        rec = np.frombuffer(data, dtype=STEP_CONFIG_DTYPE)[0]
        return cls(num_bodies=int(rec["num_bodies"]), dt=float(rec["dt"]))


def make_bodies(bodies: Iterable[Body]) -> np.ndarray:
    """Pack host-side Body objects into a record array."""
    items = list(bodies)
    out = np.zeros(len(items), dtype=BODY_DTYPE)
    for i, body in enumerate(items):
        out[i] = body.to_record()
    return out


def empty_bodies(count: int) -> np.ndarray:
    return np.zeros(int(count), dtype=BODY_DTYPE)


def as_body_array(bodies) -> np.ndarray:
    """Coerce records, Body sequences or (N, 8) float arrays to BODY_DTYPE."""
    if isinstance(bodies, np.ndarray) and bodies.dtype == BODY_DTYPE:
        return bodies.reshape(-1)
    if isinstance(bodies, np.ndarray) and bodies.dtype.names is not None:
        out = np.zeros(bodies.shape[0], dtype=BODY_DTYPE)
        for name in BODY_DTYPE.names:
            out[name] = bodies[name]
        return out
    if torch.is_tensor(bodies):
        return rows_to_records(bodies)
    if isinstance(bodies, np.ndarray):
        return rows_to_records(bodies)
    if isinstance(bodies, Sequence):
        return make_bodies(bodies)
    raise TypeError(f"cannot interpret {type(bodies).__name__} as bodies")


def records_to_rows(records: np.ndarray) -> np.ndarray:
    """View a record array as (N, 8) float32 rows (no copy)."""
    records = np.ascontiguousarray(records, dtype=BODY_DTYPE)
    return records.view(np.float32).reshape(-1, BODY_FIELDS)


def rows_to_records(rows) -> np.ndarray:
    if torch.is_tensor(rows):
        rows = rows.detach().cpu().numpy()
    rows = np.ascontiguousarray(rows, dtype=np.float32)
    if rows.ndim != 2 or rows.shape[1] != BODY_FIELDS:
        raise ValueError(f"body rows must have shape (N, {BODY_FIELDS}), got {rows.shape}")
    return rows.view(BODY_DTYPE).reshape(-1).copy()


def records_to_tensor(records: np.ndarray, device=None) -> torch.Tensor:
    rows = records_to_rows(records)
    return torch.as_tensor(rows.copy(), dtype=torch.float32, device=device)


def to_bytes(records: np.ndarray) -> bytes:
    return np.ascontiguousarray(records, dtype=BODY_DTYPE).tobytes()


def from_bytes(data: bytes) -> np.ndarray:
    if len(data) % BODY_DTYPE.itemsize != 0:
        raise ValueError(f"body buffer length {len(data)} is not a multiple of {BODY_DTYPE.itemsize}")
    return np.frombuffer(data, dtype=BODY_DTYPE).copy()
