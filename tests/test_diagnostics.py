import warnings

import numpy as np
import pytest

from parabody.diagnostics import (
    center_of_mass,
    check_finite,
    summarize,
    total_angular_momentum,
    total_energy,
    total_momentum,
)
from parabody.initial_conditions import generate_random_ic
from parabody.structures import Body, make_bodies


@pytest.fixture
def pair():
    return make_bodies(
        [
            Body(position=(0.0, 0.0, 0.0), velocity=(0.0, 1.0, 0.0), mu=1.0),
            Body(position=(2.0, 0.0, 0.0), velocity=(0.0, -1.0, 0.0), mu=1.0),
        ]
    )


class TestConservedQuantities:
    def test_energy(self, pair):
        # KE = 0.5 * (1 + 1), PE = -1 * 1 / 2
        assert total_energy(pair) == pytest.approx(1.0 - 0.5)

    def test_energy_ignores_close_pairs(self, pair):
        assert total_energy(pair, softening=3.0) == pytest.approx(1.0)

    def test_energy_with_coincident_bodies_is_finite(self):
        bodies = make_bodies([Body(mu=1.0), Body(mu=1.0)])
        assert total_energy(bodies) == 0.0

    @pytest.mark.parametrize("block_size", [1, 7, 128, 1000])
    def test_blocked_energy_matches_dense(self, block_size):
        bodies = generate_random_ic(300, mu=0.5, seed=3)
        pos = bodies["position"].astype(np.float64)
        vel = bodies["velocity"].astype(np.float64)
        mu = bodies["mu"].astype(np.float64)
        dist = np.linalg.norm(pos[:, None, :] - pos[None, :, :], axis=-1)
        mask = dist >= 0.05
        np.fill_diagonal(mask, False)
        inv = np.where(mask, 1.0 / np.where(mask, dist, 1.0), 0.0)
        dense = 0.5 * np.sum(mu[:, None] * vel ** 2) - 0.5 * np.sum(mu[:, None] * mu[None, :] * inv)

        blocked = total_energy(bodies, softening=0.05, block_size=block_size)
        assert blocked == pytest.approx(dense, rel=1e-9, abs=1e-9)

    def test_energy_rejects_bad_block_size(self, pair):
        with pytest.raises(ValueError, match="block_size"):
            total_energy(pair, block_size=0)

    def test_momentum(self, pair):
        np.testing.assert_allclose(total_momentum(pair), [0.0, 0.0, 0.0])

    def test_angular_momentum(self, pair):
        # only body 1 has a lever arm: (2, 0, 0) x (0, -1, 0) = (0, 0, -2)
        np.testing.assert_allclose(total_angular_momentum(pair), [0.0, 0.0, -2.0])

    def test_center_of_mass(self, pair):
        np.testing.assert_allclose(center_of_mass(pair), [1.0, 0.0, 0.0])

    def test_center_of_mass_without_mu(self):
        bodies = make_bodies([Body(position=(1.0, 0.0, 0.0)), Body(position=(3.0, 0.0, 0.0))])
        np.testing.assert_allclose(center_of_mass(bodies), [2.0, 0.0, 0.0])


class TestChecks:
    def test_check_finite_ok(self, pair):
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            assert check_finite(pair)

    def test_check_finite_warns(self, pair):
        pair["velocity"][1, 0] = np.nan
        with pytest.warns(RuntimeWarning, match="non-finite"):
            assert not check_finite(pair)

    def test_summarize(self, pair):
        moved = pair.copy()
        moved["velocity"][0] = (0.0, 1.1, 0.0)
        report = summarize(pair, moved, ticks=3)
        assert report["ticks"] == 3
        assert report["energy_initial"] == pytest.approx(0.5)
        assert report["energy_residual"] == pytest.approx((0.605 - 0.5) / 0.5, rel=1e-5)
        assert report["momentum_initial"] == [0.0, 0.0, 0.0]
        assert report["finite"] is True
