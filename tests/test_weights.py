import numpy as np
import pytest

from parameters import SPECIES
from weights import (AcceptanceMap, EfficiencyCurve, LocalDensity, WeightModel,
                     local_density_weight)


def test_efficiency_curve():
    curve = EfficiencyCurve([0.2, 1.0, 3.0], [0.5, 0.8])
    assert curve.efficiency(0.5) == pytest.approx(0.5)
    assert curve.efficiency(2.0) == pytest.approx(0.8)
    assert curve.efficiency(0.1) == 0.0
    assert curve.efficiency(5.0) == 0.0
    assert np.allclose(curve.efficiency(np.array([0.1, 0.3, 1.5])), [0.0, 0.5, 0.8])

    with pytest.raises(ValueError):
        EfficiencyCurve([0.2, 1.0, 3.0], [0.5])


def test_acceptance_map():
    nua = AcceptanceMap([0.0, np.pi, 2 * np.pi], [-0.8, 0.0, 0.8], [-10.0, 10.0],
                        np.array([[[1.1], [1.2]], [[0.9], [0.8]]]))
    assert nua.weight(1.0, -0.5, 0.0) == pytest.approx(1.1)
    assert nua.weight(4.0, 0.5, 0.0) == pytest.approx(0.8)
    # outside the map
    assert nua.weight(1.0, 0.9, 0.0) == 1.0
    assert nua.weight(1.0, 0.5, 12.0) == 1.0

    with pytest.raises(ValueError):
        AcceptanceMap([0.0, np.pi], [-0.8, 0.8], [-10.0, 10.0], np.ones((2, 1, 1)))


def test_local_density_window():
    dens = LocalDensity(delta_phi_bins=3)
    dens.fill([0.1])
    bin_width = np.pi / 100

    assert dens.density(0.1) == pytest.approx(1.0)
    assert dens.density(0.1 + 2 * np.pi) == pytest.approx(1.0)
    assert dens.density(0.1 + 2.5 * bin_width) == pytest.approx(1.0)
    assert dens.density(0.1 + 5.0 * bin_width) == 0.0
    assert dens.density(2.0) == 0.0


def test_local_density_wraps_around():
    dens = LocalDensity(delta_phi_bins=3)
    dens.fill(2 * np.pi - 0.013)
    assert dens.density(0.01) == pytest.approx(1.0)
    assert dens.density(-0.01) == pytest.approx(1.0)

    # negative input angles are taken modulo 2pi, still entered twice
    dens.clear()
    dens.fill(np.array([-0.5]), 2.0)
    assert dens.counts.sum() == pytest.approx(4.0)
    assert dens.density(-0.5) == pytest.approx(2.0)
    assert dens.density(2 * np.pi - 0.5) == pytest.approx(2.0)


def test_local_density_weight():
    k0s = SPECIES['K0s']
    a, b = k0s.loc_den[0], k0s.loc_den[1]
    rho = 7.0 * 200 / 7
    assert local_density_weight(k0s, 1.0, 7.0, 3) == pytest.approx(1.0 / np.exp(a * rho + b))

    a, b = k0s.loc_den[2], k0s.loc_den[3]
    assert local_density_weight(k0s, 1.2, 7.0, 3) == pytest.approx(1.0 / np.exp(a * rho + b))
    # outside the species pT axis
    assert local_density_weight(k0s, 0.5, 7.0, 3) == 1.0
    assert local_density_weight(k0s, 12.0, 7.0, 3) == 1.0


def test_weight_model_defaults_to_unity():
    model = WeightModel()
    assert model.weight('ref', 1.0, 0.5, 0.1, 0.0) == 1.0
    assert model.weight('Xi', 1.0, 0.5, 0.1, 0.0, density=50.0) == 1.0


def test_weight_model_combines_factors():
    curve = EfficiencyCurve([0.2, 1.0, 3.0], [0.5, 0.0])
    nua   = AcceptanceMap([0.0, 2 * np.pi], [-0.8, 0.8], [-10.0, 10.0], np.full((1, 1, 1), 1.2))
    model = WeightModel(efficiency={'ref': curve}, acceptance={'ref': nua})

    assert model.weight('ref', 0.5, 1.0, 0.0, 0.0) == pytest.approx(1.2 / 0.5)
    # zero efficiency rejects the particle
    assert model.weight('ref', 2.0, 1.0, 0.0, 0.0) is None
    # other populations are uncorrected
    assert model.weight('K0s', 0.5, 1.0, 0.0, 0.0) == 1.0

    w, ok = model.weights('ref', np.array([0.5, 2.0, 5.0]), np.ones(3), np.zeros(3), 0.0)
    assert ok.tolist() == [True, False, False]
    assert w[0] == pytest.approx(2.4)


def test_weight_model_local_density():
    model = WeightModel(local_density=True, delta_phi_bins=3)
    expected = local_density_weight(SPECIES['Lambda'], 1.0, 20.0, 3)
    assert model.weight('Lambda', 1.0, 0.3, 0.0, 0.0, density=20.0) == pytest.approx(expected)
    # charged tracks have no local-density table
    assert model.weight('ref', 1.0, 0.3, 0.0, 0.0, density=20.0) == 1.0
