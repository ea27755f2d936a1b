from __future__ import annotations

import pathlib
from typing import Optional

import numpy as np

from .structures import BODY_DTYPE, Body, as_body_array, empty_bodies, make_bodies


def generate_random_ic(
    num_bodies: int,
    mu: float | np.ndarray = 1.0,
    pos_scale: float = 1.0,
    vel_scale: float = 0.1,
    seed: Optional[int] = None,
) -> np.ndarray:
    """Gaussian cloud with the centre of mass at the origin and at rest."""
    if num_bodies < 1:
        raise ValueError("num_bodies must be >= 1")
    rng = np.random.default_rng(seed)
    pos = rng.normal(scale=pos_scale, size=(num_bodies, 3))
    vel = rng.normal(scale=vel_scale, size=(num_bodies, 3))
    if np.isscalar(mu):
        mus = np.full(num_bodies, float(mu))
    else:
        mus = np.asarray(mu, dtype=float).reshape(-1)
        if mus.shape[0] != num_bodies:
            raise ValueError("mu array length must match num_bodies")
    if np.any(mus < 0.0):
        raise ValueError("mu must be non-negative")

    weights = mus if mus.sum() > 0.0 else np.ones_like(mus)
    pos = pos - np.average(pos, axis=0, weights=weights)
    vel = vel - np.average(vel, axis=0, weights=weights)

    bodies = empty_bodies(num_bodies)
    bodies["position"] = pos
    bodies["velocity"] = vel
    bodies["mu"] = mus
    return bodies


def generate_binary_ic(separation: float = 2.0, mu: float = 1.0) -> np.ndarray:
    """
    Equal-mu circular binary in the xy-plane, centred on the origin.

    Relative orbit speed v = sqrt(2 mu / d); each body moves at v / 2.
    """
    if separation <= 0.0:
        raise ValueError("separation must be > 0")
    v_rel = np.sqrt(2.0 * mu / separation)
    half = 0.5 * separation
    return make_bodies(
        [
            Body(position=(-half, 0.0, 0.0), velocity=(0.0, 0.5 * v_rel, 0.0), mu=mu),
            Body(position=(half, 0.0, 0.0), velocity=(0.0, -0.5 * v_rel, 0.0), mu=mu),
        ]
    )


def reference_scenario(num_bodies: int = 4) -> np.ndarray:
    """Demo setup: a light body at (10, 10, 10), a heavier one at the origin, the rest dormant."""
    if num_bodies < 2:
        raise ValueError("reference scenario needs at least 2 bodies")
    bodies = empty_bodies(num_bodies)
    bodies["position"][0] = (10.0, 10.0, 10.0)
    bodies["mu"][0] = 1.0
    bodies["mu"][1] = 2.0
    return bodies


def period_estimate(separation: float, mu: float) -> float:
    """Orbital period of a circular equal-mu binary (total mu = 2 mu)."""
    return float(2.0 * np.pi * np.sqrt(separation**3 / (2.0 * mu)))


def _table_to_bodies(table: np.ndarray) -> np.ndarray:
    table = np.atleast_2d(np.asarray(table, dtype=float))
    n_cols = table.shape[1]
    if (n_cols - 1) % 2 != 0 or not 1 <= (n_cols - 1) // 2 <= 3:
        raise ValueError(f"IC table must have 1 + 2*D columns ([mu, x..., v...]) with D <= 3, got {n_cols}")
    dim = (n_cols - 1) // 2
    bodies = empty_bodies(table.shape[0])
    bodies["mu"] = table[:, 0]
    bodies["position"][:, :dim] = table[:, 1 : 1 + dim]
    bodies["velocity"][:, :dim] = table[:, 1 + dim : 1 + 2 * dim]
    return bodies


def load_ic(path: str | pathlib.Path) -> np.ndarray:
    """Load bodies from a .npy record array / table or a whitespace text table."""
    p = pathlib.Path(path)
    if p.suffix == ".npy":
        data = np.load(p, allow_pickle=False)
        if data.dtype.names is not None:
            return as_body_array(data)
        return _table_to_bodies(data)
    return _table_to_bodies(np.loadtxt(p))


def save_ic(path: str | pathlib.Path, bodies) -> pathlib.Path:
    p = pathlib.Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    records = as_body_array(bodies)
    if p.suffix == ".npy":
        np.save(p, records.astype(BODY_DTYPE))
    else:
        table = np.concatenate(
            [records["mu"][:, None], records["position"], records["velocity"]], axis=1
        )
        np.savetxt(p, table, header="mu px py pz vx vy vz")
    return p


def build_initial_conditions(config) -> np.ndarray:
    """Pick the IC generator named by config.ic (or config.extra['ic_path'])."""
    ic_path = config.extra.get("ic_path") if isinstance(config.extra, dict) else None
    if ic_path:
        return load_ic(ic_path)
    if config.ic == "scenario":
        return reference_scenario(config.num_bodies)
    if config.ic == "binary":
        return generate_binary_ic(config.separation, config.mu)
    if config.ic == "random":
        return generate_random_ic(
            config.num_bodies,
            mu=config.mu,
            pos_scale=config.pos_scale,
            vel_scale=config.vel_scale,
            seed=config.seed,
        )
    raise ValueError(f"Unsupported ic={config.ic!r}. Use 'random', 'scenario' or 'binary'.")
