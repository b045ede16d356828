import itertools

import numpy as np
import pytest

from regions import ConfigurationError, RegionRegistry
from correlators import (CorrelatorEngine, build_catalog, correlation_ratio,
                         correlation_ratios, parse_correlator)
from flowvectors import FlowVectorTable

TAG_REF, TAG_POI, TAG_OL = 1, 32, 64


def _registry():
    reg = RegionRegistry()
    reg.declare('full', -0.8, 0.8, 1, TAG_REF)
    reg.declare('neg',  -0.8, -0.4, 1, TAG_REF)
    reg.declare('pos',   0.4, 0.8, 1, TAG_REF)
    reg.declare('poi',  -0.8, 0.8, 2, TAG_POI)
    reg.declare('ol',   -0.8, 0.8, 2, TAG_OL)
    reg.declare('poiN', -0.8, -0.4, 2, TAG_POI)
    reg.declare('other', -0.8, 0.8, 3, TAG_POI)
    return reg.finalize()


def _engine(reg, definitions, particles):
    configs = build_catalog(definitions, reg)
    table   = FlowVectorTable(reg, configs)
    table.fill_many(particles['eta'], particles['bin'], particles['phi'],
                    particles['weight'], particles['tag'])
    return CorrelatorEngine(table), configs


def _particles(rng, n, tags, n_bins=2, unit=False):
    return {
        'eta':    rng.uniform(-0.75, 0.75, n),
        'phi':    rng.uniform(0.0, 2 * np.pi, n),
        'weight': np.ones(n) if unit else rng.uniform(0.5, 1.5, n),
        'bin':    rng.integers(0, n_bins, n),
        'tag':    rng.choice(tags, n),
    }


def _brute(slots, harmonics):
    """Sum over distinct-index tuples, slot k drawn from slots[k]."""
    num, den = 0j, 0.0
    for combo in itertools.product(*slots):
        idx = [c[0] for c in combo]
        if len(set(idx)) < len(idx):
            continue
        term, w = 1 + 0j, 1.0
        for (_, phi, wi), h in zip(combo, harmonics):
            term *= wi * np.exp(1j * h * phi)
            w    *= wi
        num += term
        den += w
    return num, den


def _members(p, tag, region=None, kbin=None):
    sel = (p['tag'] & tag) != 0
    if region is not None:
        sel &= (p['eta'] > region.eta_min) & (p['eta'] < region.eta_max)
    if kbin is not None:
        sel &= p['bin'] == kbin
    return [(i, p['phi'][i], p['weight'][i]) for i in np.nonzero(sel)[0]]


# ── parsing ────────────────────────────────────────────────────────────

def test_parse_gap_expression():
    cfg = parse_correlator('pos {2} neg {-2}', 'c22')
    assert cfg.eta_gap
    assert cfg.order == 2
    assert [(g.poi, g.ref, g.overlap, g.harmonics) for g in cfg.groups] == [
        ('pos', 'pos', None, (2,)), ('neg', 'neg', None, (-2,))]


def test_parse_overlap_expression():
    cfg = parse_correlator('poi full | ol {2, 2 -2 -2}', 'c24dpt', True)
    assert not cfg.eta_gap
    assert cfg.order == 4
    (g,) = cfg.groups
    assert (g.poi, g.ref, g.overlap, g.harmonics) == ('poi', 'full', 'ol', (2, 2, -2, -2))
    assert cfg.region_names() == {'poi', 'full', 'ol'}
    assert cfg.moment_requirements() == {'poi': (8, 4), 'full': (8, 4), 'ol': (8, 4)}


@pytest.mark.parametrize("expression", [
    'full {2',
    'full 2}',
    '{2 -2}',
    'a b c {2 -2}',
    'full {}',
    'full {2 x}',
    'full | {2 -2}',
    'poi full | ol extra {2 -2}',
    'full {2} neg',
    '| full {2 -2}',
    '',
])
def test_parse_rejects_malformed(expression):
    with pytest.raises(ConfigurationError):
        parse_correlator(expression, 'bad')


def test_validate():
    reg = _registry()
    assert parse_correlator('poi full | ol {2 -2}', 'x', True).validate(reg).n_bins == 2
    assert parse_correlator('full {2 -2}', 'x').validate(reg).n_bins == 1

    with pytest.raises(ConfigurationError):      # undeclared
        parse_correlator('ghost {2 -2}', 'x').validate(reg)
    with pytest.raises(ConfigurationError):      # groups overlap in eta
        parse_correlator('full {2} neg {-2}', 'x').validate(reg)
    with pytest.raises(ConfigurationError):      # overlap on a self-correlated group
        parse_correlator('full full | ol {2 -2}', 'x').validate(reg)
    with pytest.raises(ConfigurationError):      # overlap binned unlike the POI
        parse_correlator('poi full | full {2 -2}', 'x', True).validate(reg)
    with pytest.raises(ConfigurationError):      # mixed binnings
        parse_correlator('poi other {2 -2}', 'x', True).validate(reg)
    with pytest.raises(ConfigurationError):      # integrated config on a binned region
        parse_correlator('poi full {2 -2}', 'x', False).validate(reg)


# ── ratio policy ───────────────────────────────────────────────────────

def test_correlation_ratio():
    assert correlation_ratio(0.5 + 3j, 2.0) == pytest.approx(0.25)
    assert correlation_ratio(1.0, 0.0) is None
    assert correlation_ratio(2.0, 2.0) is None       # exactly one is suppressed
    assert correlation_ratio(-3.0, 2.0) is None
    assert correlation_ratio(complex(np.nan, 0), 2.0) is None

    values, ok = correlation_ratios([0.5, 1.0, 3.0, 0.0], [2.0, 0.0, 3.0, 1.0])
    assert ok.tolist() == [True, False, False, True]
    assert values[0] == pytest.approx(0.25)


# ── engine against explicit sums ───────────────────────────────────────

def test_two_particle_same_region_aligned():
    reg = _registry()
    n = 12
    p = {'eta': np.zeros(n), 'phi': np.zeros(n), 'weight': np.ones(n),
         'bin': np.zeros(n, dtype=int), 'tag': np.full(n, TAG_REF)}
    engine, (cfg,) = _engine(reg, [('full {2 -2}', 'c22', False)], p)
    num, den = engine.evaluate(cfg)
    assert num == pytest.approx(n * (n - 1))
    assert den == pytest.approx(n * (n - 1))
    assert correlation_ratio(num, den) is None


def test_two_particle_gap_and_same_region():
    rng = np.random.default_rng(11)
    reg = _registry()
    p   = _particles(rng, 40, [TAG_REF])
    engine, (gap, same) = _engine(reg, [('pos {2} neg {-2}', 'c22', False),
                                        ('full {2 -2}', 'c22full', False)], p)
    table = engine.table

    num, den = engine.evaluate(gap)
    qa, qb = table.get('pos', 0, 2, 1), table.get('neg', 0, 2, 1)
    assert num == pytest.approx(qa * np.conj(qb))
    assert den == pytest.approx(table.multiplicity('pos') * table.multiplicity('neg'))

    num, den = engine.evaluate(same)
    q2 = table.get('full', 0, 2, 1)
    assert num == pytest.approx(abs(q2)**2 - table.get('full', 0, 0, 2))
    assert den == pytest.approx(table.get('full', 0, 0, 1).real**2
                                - table.get('full', 0, 0, 2).real)


def test_four_particle_same_region_weighted():
    rng = np.random.default_rng(5)
    reg = _registry()
    p   = _particles(rng, 8, [TAG_REF])
    engine, (cfg,) = _engine(reg, [('full {2 2 -2 -2}', 'c24', False)], p)

    members = _members(p, TAG_REF, reg['full'])
    num, den = engine.evaluate(cfg)
    bnum, bden = _brute([members] * 4, (2, 2, -2, -2))
    assert num == pytest.approx(bnum, rel=1e-9, abs=1e-9)
    assert den == pytest.approx(bden, rel=1e-9)


def test_four_particle_closed_form_unit_weights():
    rng = np.random.default_rng(8)
    reg = _registry()
    p   = _particles(rng, 30, [TAG_REF], unit=True)
    engine, (cfg,) = _engine(reg, [('full {2 2 -2 -2}', 'c24', False)], p)

    t  = engine.table
    m  = t.multiplicity('full')
    q2 = t.get('full', 0, 2, 1)
    q4 = t.get('full', 0, 4, 1)
    expected = (abs(q2)**4 + abs(q4)**2 - 2 * (q4 * np.conj(q2)**2).real
                - 4 * (m - 2) * abs(q2)**2 + 2 * m * (m - 3))
    num, den = engine.evaluate(cfg)
    assert num.real == pytest.approx(expected, rel=1e-9)
    assert den == pytest.approx(m * (m - 1) * (m - 2) * (m - 3))


def test_differential_with_overlap():
    rng = np.random.default_rng(21)
    reg = _registry()
    # POI only, reference only, and tracks in both sets (carrying the overlap bit)
    p = _particles(rng, 14, [TAG_POI, TAG_REF, TAG_REF | TAG_POI | TAG_OL])
    engine, (c2, c4) = _engine(reg, [('poi full | ol {2 -2}', 'c22dpt', True),
                                     ('poi full | ol {2 2 -2 -2}', 'c24dpt', True)], p)

    nums2, dens2 = engine.evaluate_bins(c2)
    nums4, dens4 = engine.evaluate_bins(c4)
    ref = _members(p, TAG_REF, reg['full'])
    for kbin in range(2):
        poi = _members(p, TAG_POI, reg['poi'], kbin)

        bnum, bden = _brute([poi, ref], (2, -2))
        num, den = engine.evaluate(c2, kbin)
        assert num == pytest.approx(bnum, rel=1e-9, abs=1e-9)
        assert den == pytest.approx(bden, rel=1e-9)
        assert nums2[kbin] == pytest.approx(num)
        assert dens2[kbin] == pytest.approx(den)

        bnum, bden = _brute([poi, ref, ref, ref], (2, 2, -2, -2))
        num, den = engine.evaluate(c4, kbin)
        assert num == pytest.approx(bnum, rel=1e-9, abs=1e-9)
        assert den == pytest.approx(bden, rel=1e-9)
        assert nums4[kbin] == pytest.approx(num)


def test_differential_gap_without_overlap():
    rng = np.random.default_rng(2)
    reg = _registry()
    p   = _particles(rng, 30, [TAG_POI, TAG_REF])
    engine, (cfg,) = _engine(reg, [('poiN {2} pos {-2}', 'c22dpt', True)], p)
    t = engine.table
    nums, dens = engine.evaluate_bins(cfg)
    for kbin in range(2):
        qp = t.get('poiN', kbin, 2, 1)
        qr = t.get('pos', 0, 2, 1)
        assert nums[kbin] == pytest.approx(qp * np.conj(qr))
        assert dens[kbin] == pytest.approx(t.multiplicity('poiN', kbin) * t.multiplicity('pos'))


def test_empty_bin_is_undefined():
    reg = _registry()
    p = {'eta': np.array([0.1, 0.2, -0.3]), 'phi': np.array([0.1, 1.0, 2.0]),
         'weight': np.ones(3), 'bin': np.array([0, 0, 0]),
         'tag': np.array([TAG_POI, TAG_REF, TAG_REF])}
    engine, (cfg,) = _engine(reg, [('poi full | ol {2 -2}', 'c22dpt', True)], p)
    num, den = engine.evaluate(cfg, 1)
    assert den == 0
    assert correlation_ratio(num, den) is None
    assert engine.evaluate(cfg, 0)[1] == pytest.approx(2.0)


def test_integrated_config_ignores_bin():
    rng = np.random.default_rng(4)
    reg = _registry()
    p   = _particles(rng, 20, [TAG_REF])
    engine, (cfg,) = _engine(reg, [('full {2 -2}', 'c22', False)], p)
    assert engine.evaluate(cfg, 5) == engine.evaluate(cfg, 0)
    nums, dens = engine.evaluate_bins(cfg)
    assert nums.shape == (1,) and dens.shape == (1,)
