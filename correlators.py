import logging
import re
from collections import namedtuple

import numpy as np

from regions import ConfigurationError

log = logging.getLogger(__name__)

# Region names, the overlap marker, brace groups, and stray braces (always an error).
_TOKEN = re.compile(r"\{[^{}]*\}|\||[^\s{}|]+|[{}]")

# Factor roles inside a group. Merging two factors ORs their roles, so
# POI | REF addresses the overlap region.
POI = 1
REF = 2

FactorGroup = namedtuple('FactorGroup', ['poi', 'ref', 'overlap', 'harmonics'])


class CorrelatorConfig:
    """
    One entry of the correlator catalog.

    ``groups`` is a list of FactorGroup. Inside a group the first harmonic
    sits on the POI region and the remaining ones on the reference region;
    a group naming a single region correlates that region with itself.
    Several groups multiply and must be separated in eta.
    """

    def __init__(self, expression, label, pt_differential, groups):
        self.expression      = expression
        self.label           = label
        self.pt_differential = bool(pt_differential)
        self.groups          = list(groups)
        self.n_bins          = 1

    @property
    def eta_gap(self):
        return len(self.groups) > 1

    @property
    def order(self):
        return sum(len(g.harmonics) for g in self.groups)

    def region_names(self):
        names = set()
        for g in self.groups:
            names.update(n for n in (g.poi, g.ref, g.overlap) if n is not None)
        return names

    def moment_requirements(self):
        """{region: (n_max, p_max)} needed to evaluate this correlator."""
        need = {}
        for g in self.groups:
            n_max = sum(abs(h) for h in g.harmonics)
            p_max = len(g.harmonics)
            for name in (g.poi, g.ref, g.overlap):
                if name is None:
                    continue
                n_old, p_old = need.get(name, (0, 1))
                need[name] = (max(n_old, n_max), max(p_old, p_max))
        return need

    def validate(self, registry):
        """Check the config against a registry and fix its kinematic bin count."""
        binnings = set()
        for g in self.groups:
            poi = registry[g.poi]
            ref = registry[g.ref]
            used = [poi, ref]
            if g.overlap is not None:
                if g.poi == g.ref:
                    raise ConfigurationError(
                        f"'{self.expression}': overlap region given for a "
                        f"self-correlated group '{g.poi}'.")
                ol = registry[g.overlap]
                if ol.n_bins != poi.n_bins:
                    raise ConfigurationError(
                        f"'{self.expression}': overlap '{ol.name}' has {ol.n_bins} bins, "
                        f"POI '{poi.name}' has {poi.n_bins}.")
                used.append(ol)
            binnings.update(r.n_bins for r in used if r.n_bins > 1)

        if len(binnings) > 1:
            raise ConfigurationError(
                f"'{self.expression}': regions mix kinematic binnings {sorted(binnings)}.")
        if binnings and not self.pt_differential:
            raise ConfigurationError(
                f"'{self.expression}': integrated correlator references a binned region.")

        if self.eta_gap:
            for i, gi in enumerate(self.groups):
                for gj in self.groups[i + 1:]:
                    for a in _group_regions(gi, registry):
                        for b in _group_regions(gj, registry):
                            if a.overlaps(b):
                                raise ConfigurationError(
                                    f"'{self.expression}': regions '{a.name}' and "
                                    f"'{b.name}' overlap in eta but sit in "
                                    f"different groups.")

        self.n_bins = binnings.pop() if binnings else 1
        return self

    def __repr__(self):
        return (f"CorrelatorConfig({self.expression!r}, label={self.label!r}, "
                f"pt_differential={self.pt_differential})")


def _group_regions(group, registry):
    return [registry[n] for n in (group.poi, group.ref, group.overlap) if n is not None]


def _parse_harmonics(text, expression):
    items = [s for s in re.split(r"[\s,]+", text.strip()) if s]
    if not items:
        raise ConfigurationError(f"Empty harmonic list in correlator '{expression}'.")
    try:
        return tuple(int(s) for s in items)
    except ValueError:
        raise ConfigurationError(
            f"Non-integer harmonic in '{{{text}}}' of correlator '{expression}'.") from None


def parse_correlator(expression, label, pt_differential=False):
    """
    Parse a catalog expression such as

        'poiP10dpt {2} refN10 {-2}'
        'poifulldpt reffull | poioldpt {2 2 -2 -2}'

    Returns a CorrelatorConfig. Raises ConfigurationError on malformed text.
    """
    groups = []
    names, overlap, expect_overlap = [], None, False

    for token in _TOKEN.findall(expression):
        if token in ('{', '}'):
            raise ConfigurationError(f"Unbalanced brace in correlator '{expression}'.")

        if token == '|':
            if not names or expect_overlap or overlap is not None:
                raise ConfigurationError(f"Misplaced '|' in correlator '{expression}'.")
            expect_overlap = True
            continue

        if token.startswith('{'):
            if expect_overlap:
                raise ConfigurationError(
                    f"'|' without an overlap region in correlator '{expression}'.")
            if not names:
                raise ConfigurationError(
                    f"Harmonic list without a region in correlator '{expression}'.")
            if len(names) > 2:
                raise ConfigurationError(
                    f"At most a POI and a reference region per group, got {names} "
                    f"in correlator '{expression}'.")
            harmonics = _parse_harmonics(token[1:-1], expression)
            poi = names[0]
            ref = names[1] if len(names) == 2 else names[0]
            groups.append(FactorGroup(poi, ref, overlap, harmonics))
            names, overlap = [], None
            continue

        if expect_overlap:
            overlap, expect_overlap = token, False
        elif overlap is not None:
            raise ConfigurationError(
                f"Region '{token}' after the overlap region in correlator '{expression}'.")
        else:
            names.append(token)

    if names or expect_overlap or overlap is not None:
        raise ConfigurationError(
            f"Regions without a harmonic list at the end of correlator '{expression}'.")
    if not groups:
        raise ConfigurationError(f"Empty correlator expression for '{label}'.")

    return CorrelatorConfig(expression, label, pt_differential, groups)


def build_catalog(definitions, registry):
    """Parse and validate [(expression, label, pt_differential), ...]."""
    catalog = []
    for expression, label, pt_differential in definitions:
        config = parse_correlator(expression, label, pt_differential).validate(registry)
        log.debug("Correlator %r -> channel %s (%d bins)",
                  expression, label, config.n_bins)
        catalog.append(config)
    return catalog


def correlation_ratio(numerator, denominator):
    """
    Event-wise correlation <m> = Re(numerator) / denominator.

    None when undefined (zero denominator) or when |<m>| >= 1; neither
    case may reach an accumulator.
    """
    if denominator == 0:
        return None
    value = numerator.real / denominator
    if not abs(value) < 1:
        return None
    return value


def correlation_ratios(numerators, denominators):
    """Vectorised correlation_ratio: (values, accepted mask)."""
    numerators   = np.asarray(numerators)
    denominators = np.asarray(denominators, dtype=np.float64)
    defined = denominators != 0
    values  = np.zeros(denominators.shape, dtype=np.float64)
    values[defined] = numerators.real[defined] / denominators[defined]
    with np.errstate(invalid='ignore'):
        accepted = defined & (np.abs(values) < 1)
    return values, accepted


class CorrelatorEngine:
    """
    Multi-particle correlators from the flow vectors of one event.

    The sum over distinct particle tuples is built by peeling off the last
    factor f_m:

        D(f_1..f_m) = D(f_1..f_{m-1}) * Q(f_m)
                      - sum_j D(f_1..(f_j + f_m)..f_{m-1})

    where f_j + f_m carries harmonic n_j + n_m, power p_j + p_m and lives in
    the intersection of the two particle sets (POI with REF -> overlap
    region, empty if none is declared). The denominator is the same sum with
    every harmonic set to zero.
    """

    def __init__(self, table):
        self.table = table

    def evaluate(self, config, kinematic_bin=0):
        """(numerator, denominator) at one kinematic bin. Denominator 0 means undefined."""
        if not config.pt_differential:
            kinematic_bin = 0
        numerator, denominator = self._evaluate(config, int(kinematic_bin))
        return complex(numerator), float(denominator)

    def evaluate_bins(self, config):
        """(numerators, denominators) over all config.n_bins bins in one pass."""
        if not config.pt_differential:
            numerator, denominator = self.evaluate(config, 0)
            return (np.array([numerator], dtype=np.complex128),
                    np.array([denominator], dtype=np.float64))
        numerator, denominator = self._evaluate(config, slice(None))
        shape = (config.n_bins,)
        return (np.broadcast_to(np.asarray(numerator, dtype=np.complex128), shape).copy(),
                np.broadcast_to(np.asarray(denominator, dtype=np.float64), shape).copy())

    def _evaluate(self, config, bins):
        numerator   = 1.0 + 0.0j
        denominator = 1.0 + 0.0j
        for group in config.groups:
            zeros = (0,) * len(group.harmonics)
            numerator   = numerator * self._group(group, group.harmonics, bins)
            denominator = denominator * self._group(group, zeros, bins)
        return numerator, np.real(denominator)

    def _group(self, group, harmonics, bins):
        if group.poi == group.ref:
            roles = [POI] * len(harmonics)
        else:
            roles = [POI] + [REF] * (len(harmonics) - 1)
        factors = tuple((role, n, 1) for role, n in zip(roles, harmonics))
        return self._distinct(group, factors, bins, {})

    def _distinct(self, group, factors, bins, memo):
        # The distinct-tuple sum is symmetric in its factors.
        key = tuple(sorted(factors))
        if key in memo:
            return memo[key]

        *head, (role, n, p) = factors
        value = self._moment(group, role, n, p, bins)
        if head:
            value = self._distinct(group, tuple(head), bins, memo) * value
            for i, (role_i, n_i, p_i) in enumerate(head):
                merged = head[:i] + [(role_i | role, n_i + n, p_i + p)] + head[i + 1:]
                value = value - self._distinct(group, tuple(merged), bins, memo)

        memo[key] = value
        return value

    def _moment(self, group, role, n, p, bins):
        if role == POI:
            name = group.poi
        elif role == REF:
            name = group.ref
        else:
            name = group.overlap
            if name is None:
                return 0.0
        return self.table.vector(name, bins, n, p)
