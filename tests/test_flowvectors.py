import numpy as np
import pytest

from regions import ConfigurationError, RegionRegistry
from correlators import parse_correlator
from flowvectors import FlowVectorTable


def _setup():
    reg = RegionRegistry()
    reg.declare('full', -0.8, 0.8, 1, 1)
    reg.declare('binned', -0.8, 0.8, 3, 2)
    reg.declare('idle', -0.8, 0.8, 1, 4)
    reg.finalize()
    configs = [
        parse_correlator('full {2 -2}', 'c22', False).validate(reg),
        parse_correlator('binned full {2 -2}', 'c22dpt', True).validate(reg),
    ]
    return reg, FlowVectorTable(reg, configs)


def test_storage_follows_correlator_needs():
    _, table = _setup()
    # {2 -2}: harmonics up to 4, powers up to 2
    assert table.moments('full').shape == (1, 5, 3)
    assert table.moments('binned').shape == (3, 5, 3)
    # unreferenced region: multiplicity only
    assert table.moments('idle').shape == (1, 1, 2)


def test_needs_finalized_registry():
    reg = RegionRegistry()
    reg.declare('full', -0.8, 0.8, 1, 1)
    with pytest.raises(ConfigurationError):
        FlowVectorTable(reg, [])


def test_unknown_region_in_config():
    reg, _ = _setup()
    config = parse_correlator('ghost {2 -2}', 'x', False)
    with pytest.raises(ConfigurationError):
        FlowVectorTable(reg, [config])


def test_single_fill():
    _, table = _setup()
    phi, w = 0.7, 1.5
    table.fill(0.1, 0, phi, w, 1)

    assert np.isclose(table.get('full', 0, 2, 1), w * np.exp(2j * phi))
    assert np.isclose(table.get('full', 0, 4, 2), w**2 * np.exp(4j * phi))
    assert np.isclose(table.get('full', 0, 0, 1), w)
    # negative harmonic is the complex conjugate
    assert np.isclose(table.get('full', 0, -2, 1), w * np.exp(-2j * phi))
    assert table.multiplicity('full') == pytest.approx(w)
    # wrong membership bit
    assert table.get('binned', 0, 0, 1) == 0


def test_fill_respects_tag_and_eta():
    _, table = _setup()
    table.fill(0.8, 0, 0.3, 1.0, 1)     # on the edge, outside
    table.fill(0.2, 0, 0.3, 1.0, 8)     # no matching bit
    assert table.multiplicity('full') == 0
    table.fill(0.2, 0, 0.3, 1.0, 1 | 2)  # both regions at once
    assert table.multiplicity('full') == 1
    assert table.multiplicity('binned', 0) == 1


def test_kinematic_bins():
    _, table = _setup()
    table.fill(0.0, 1, 0.5, 1.0, 2 | 1)
    table.fill(0.0, 3, 0.5, 1.0, 2 | 1)   # beyond the binned region
    table.fill(0.0, -1, 0.5, 1.0, 2 | 1)  # below every axis
    assert table.multiplicity('binned', 0) == 0
    assert table.multiplicity('binned', 1) == 1
    assert table.multiplicity('binned', 2) == 0
    # single-bin regions aggregate every kinematic bin
    assert table.multiplicity('full', 0) == 3
    assert table.multiplicity('full', 7) == 3


def test_get_outside_binning():
    _, table = _setup()
    with pytest.raises(IndexError):
        table.get('binned', 3, 2, 1)
    with pytest.raises(IndexError):
        table.get('binned', -1, 2, 1)


def test_unallocated_moment():
    _, table = _setup()
    with pytest.raises(ConfigurationError):
        table.get('full', 0, 6, 1)
    with pytest.raises(ConfigurationError):
        table.get('idle', 0, 2, 1)


def test_fill_many_matches_fill():
    rng = np.random.default_rng(3)
    n   = 200
    eta = rng.uniform(-1.0, 1.0, n)
    phi = rng.uniform(0.0, 2 * np.pi, n)
    w   = rng.uniform(0.5, 2.0, n)
    bins = rng.integers(-1, 4, n)
    tags = rng.choice([1, 2, 3, 4, 7], n)

    _, one = _setup()
    for i in range(n):
        one.fill(eta[i], bins[i], phi[i], w[i], tags[i])

    _, many = _setup()
    many.fill_many(eta, bins, phi, w, tags)

    for name in ('full', 'binned', 'idle'):
        assert np.allclose(one.moments(name), many.moments(name))


def test_clear_resets_everything():
    _, table = _setup()
    table.fill_many([0.1, -0.2], [0, 2], [0.3, 1.2], [1.0, 1.0], [3, 3])
    table.clear()
    for name in ('full', 'binned', 'idle'):
        assert not np.any(table.moments(name))
    assert table.get('binned', 2, 2, 1) == 0
