from __future__ import annotations

import warnings
from typing import Any, Dict, Optional

import numpy as np

from .structures import as_body_array


# Rows of the pairwise potential evaluated at once; keeps memory O(block * N).
ENERGY_BLOCK_SIZE = 128


def _unpack(bodies):
    records = as_body_array(bodies)
    pos = records["position"].astype(np.float64)
    vel = records["velocity"].astype(np.float64)
    mu = records["mu"].astype(np.float64)
    return pos, vel, mu


def total_energy(bodies, softening: float = 0.0, block_size: int = ENERGY_BLOCK_SIZE) -> float:
    """
    Total energy per unit G for an N-body system, using mu as mass:

      E = 0.5 sum_i mu_i v_i^2 - sum_{i<j} mu_i mu_j / r_ij

    Pairs closer than `softening` are left out of the potential, matching
    the pairs the integrator ignores.
    """
    pos, vel, mu = _unpack(bodies)
    KE = 0.5 * np.sum(mu[:, None] * vel ** 2)

    if block_size < 1:
        raise ValueError(f"block_size must be >= 1, got {block_size}")
    cutoff = max(float(softening), 1e-30)
    n = pos.shape[0]
    PE = 0.0
    for start in range(0, n, block_size):
        rows = np.arange(start, min(start + block_size, n))
        r_ij = pos[rows, None, :] - pos[None, :, :]
        dist = np.sqrt(np.sum(r_ij ** 2, axis=-1))
        mask = dist >= cutoff
        mask[np.arange(rows.size), rows] = False
        inv_dist = np.where(mask, 1.0 / np.where(mask, dist, 1.0), 0.0)
        PE -= 0.5 * np.sum(mu[rows, None] * mu[None, :] * inv_dist)
    return float(KE + PE)


def total_momentum(bodies) -> np.ndarray:
    _, vel, mu = _unpack(bodies)
    return np.sum(mu[:, None] * vel, axis=0)


def total_angular_momentum(bodies) -> np.ndarray:
    pos, vel, mu = _unpack(bodies)
    return np.sum(np.cross(pos, vel) * mu[:, None], axis=0)


def center_of_mass(bodies) -> np.ndarray:
    pos, _, mu = _unpack(bodies)
    total = mu.sum()
    if total <= 0.0:
        return pos.mean(axis=0) if pos.shape[0] else np.zeros(3)
    return np.sum(pos * mu[:, None], axis=0) / total


def check_finite(bodies, label: str = "bodies") -> bool:
    records = as_body_array(bodies)
    ok = bool(np.all(np.isfinite(records["position"])) and np.all(np.isfinite(records["velocity"])))
    if not ok:
        bad = np.flatnonzero(
            ~(np.isfinite(records["position"]).all(axis=1) & np.isfinite(records["velocity"]).all(axis=1))
        )
        warnings.warn(f"{label}: non-finite state in {bad.size} bodies (first index {bad[0]})", RuntimeWarning)
    return ok


def _relative(final: float, initial: float) -> Optional[float]:
    if initial == 0.0:
        return None
    return (final - initial) / abs(initial)


def _relative_norm(final: np.ndarray, initial: np.ndarray) -> float:
    return float(np.linalg.norm(final - initial) / (np.linalg.norm(initial) + 1e-12))


def summarize(initial, final, softening: float = 0.0, ticks: Optional[int] = None) -> Dict[str, Any]:
    """Conservation report between two states of the same bodies."""
    E0 = total_energy(initial, softening=softening)
    E1 = total_energy(final, softening=softening)
    P0 = total_momentum(initial)
    P1 = total_momentum(final)
    L0 = total_angular_momentum(initial)
    L1 = total_angular_momentum(final)
    return {
        "ticks": ticks,
        "energy_initial": E0,
        "energy_final": E1,
        "energy_residual": _relative(E1, E0),
        "momentum_initial": P0.tolist(),
        "momentum_final": P1.tolist(),
        "momentum_residual": _relative_norm(P1, P0),
        "angular_momentum_initial": L0.tolist(),
        "angular_momentum_final": L1.tolist(),
        "angular_momentum_residual": _relative_norm(L1, L0),
        "center_of_mass_final": center_of_mass(final).tolist(),
        "finite": check_finite(final, label="final state"),
    }
