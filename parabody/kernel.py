from __future__ import annotations

import math
from typing import Iterable, Optional

import torch

from .structures import BODY_FIELDS, MASS, MU, POSITION, VELOCITY, StepConfig


DEFAULT_WORKGROUP_SIZE = 64
DEFAULT_SOFTENING = 0.1
PAIR_POLICIES = ("skip", "halt")


def num_workgroups(num_bodies: int, workgroup_size: int = DEFAULT_WORKGROUP_SIZE) -> int:
    """Workgroups needed to give every active body one worker."""
    if workgroup_size < 1:
        raise ValueError(f"workgroup_size must be >= 1, got {workgroup_size}")
    return int(math.ceil(num_bodies / workgroup_size))


def _shares_storage(a: torch.Tensor, b: torch.Tensor) -> bool:
    if a.device != b.device:
        return False
    return a.untyped_storage().data_ptr() == b.untyped_storage().data_ptr()


def check_buffers(src: torch.Tensor, dst: torch.Tensor, step: StepConfig) -> None:
    """Reject a dispatch whose bindings break the kernel's contract."""
    for name, buf in (("src", src), ("dst", dst)):
        if not torch.is_tensor(buf):
            raise ValueError(f"{name} must be a tensor, got {type(buf).__name__}")
        if buf.dim() != 2 or buf.shape[1] != BODY_FIELDS:
            raise ValueError(f"{name} must have shape (capacity, {BODY_FIELDS}), got {tuple(buf.shape)}")
        if buf.dtype != torch.float32:
            raise ValueError(f"{name} must be float32, got {buf.dtype}")
    if src.device != dst.device:
        raise ValueError(f"src and dst live on different devices ({src.device} vs {dst.device})")
    if _shares_storage(src, dst):
        raise ValueError("src and dst alias the same storage")
    step.validate(min(src.shape[0], dst.shape[0]))


def check_pair_policy(pair_policy: str) -> str:
    if pair_policy not in PAIR_POLICIES:
        raise ValueError(f"Unsupported pair_policy={pair_policy!r}. Use 'skip' or 'halt'.")
    return pair_policy


@torch.no_grad()
def integrate_worker(
    src: torch.Tensor,
    dst: torch.Tensor,
    idx: int,
    step: StepConfig,
    softening: float = DEFAULT_SOFTENING,
    pair_policy: str = "skip",
) -> None:
    """
    Update body `idx` exactly as a single worker would, one partner at a time.

    Semi-implicit Euler:
      x' = x + v * dt                  (old velocity)
      v' = v + dt * sum_j mu_j (x_j - x) / |x_j - x|^3
      mass' = mass + 1

    Partners with j == idx or |x_j - x| < softening contribute nothing. Under
    pair_policy="halt" the first such partner ends the sum instead.
    """
    pair_policy = check_pair_policy(pair_policy)
    n = int(step.num_bodies)
    if idx >= n:
        return

    body = src[idx].clone()
    pos = src[idx, POSITION]
    vel = src[idx, VELOCITY]

    body[POSITION] = pos + vel * step.dt

    acc = torch.zeros(3, dtype=src.dtype, device=src.device)
    for j in range(n):
        separation = src[j, POSITION] - pos
        distance = torch.linalg.vector_norm(separation)
        if j == idx or distance < softening or distance == 0.0:
            if pair_policy == "halt":
                break
            continue
        acc = acc + src[j, MU] / (distance * distance * distance) * separation

    body[VELOCITY] = vel + acc * step.dt
    body[MASS] = body[MASS] + 1.0
    dst[idx] = body


def _workgroup_accelerations(
    src: torch.Tensor,
    lanes: torch.Tensor,
    n: int,
    softening: float,
    pair_policy: str,
) -> torch.Tensor:
    pos_i = src[lanes, POSITION]   # (W, 3)
    pos_j = src[:n, POSITION]      # (n, 3)
    mu_j = src[:n, MU]             # (n,)

    separation = pos_j.unsqueeze(0) - pos_i.unsqueeze(1)      # (W, n, 3)
    distance = torch.linalg.vector_norm(separation, dim=-1)   # (W, n)

    partners = torch.arange(n, device=src.device)
    stop = (partners.unsqueeze(0) == lanes.unsqueeze(1)) | (distance < softening) | (distance == 0.0)
    if pair_policy == "halt":
        # everything from the first stop onwards is dropped
        active = torch.cumsum(stop.to(torch.int32), dim=1) == 0
    else:
        active = ~stop

    safe = torch.where(active, distance, torch.ones_like(distance))
    coeff = torch.where(active, mu_j.unsqueeze(0) / (safe * safe * safe), torch.zeros_like(safe))
    return (coeff.unsqueeze(-1) * separation).sum(dim=1)


@torch.no_grad()
def integrate(
    src: torch.Tensor,
    dst: torch.Tensor,
    step: StepConfig,
    softening: float = DEFAULT_SOFTENING,
    pair_policy: str = "skip",
    workgroup_size: int = DEFAULT_WORKGROUP_SIZE,
    workgroup_order: Optional[Iterable[int]] = None,
) -> int:
    """
    Dispatch one tick of the integrator over `src` -> `dst`.

    Workers are issued in ceil(num_bodies / workgroup_size) workgroups; the
    lanes of a workgroup are evaluated together as one tensor block. Lanes
    past `num_bodies` exit through the bounds guard, so rows of `dst` at or
    beyond `num_bodies` are never written. `workgroup_order` permutes the
    order in which workgroups execute; results do not depend on it.

    Returns the number of workgroups dispatched.
    """
    check_buffers(src, dst, step)
    check_pair_policy(pair_policy)

    n = int(step.num_bodies)
    groups = num_workgroups(n, workgroup_size)
    if workgroup_order is None:
        order = range(groups)
    else:
        order = [int(g) for g in workgroup_order]
        if sorted(order) != list(range(groups)):
            raise ValueError(f"workgroup_order must be a permutation of range({groups}), got {order}")

    dt = float(step.dt)
    for group in order:
        lanes = torch.arange(
            group * workgroup_size, (group + 1) * workgroup_size, device=src.device
        )
        lanes = lanes[lanes < n]  # bounds guard
        if lanes.numel() == 0:
            continue

        acc = _workgroup_accelerations(src, lanes, n, float(softening), pair_policy)

        out = src[lanes].clone()
        out[:, POSITION] = src[lanes, POSITION] + src[lanes, VELOCITY] * dt
        out[:, VELOCITY] = src[lanes, VELOCITY] + acc * dt
        out[:, MASS] = out[:, MASS] + 1.0
        dst[lanes] = out

    return groups
