import logging

import numpy as np

from regions import ConfigurationError

log = logging.getLogger(__name__)


class _Slot:
    """Moments of one region: q[bin, n, p] = sum_j w_j^p exp(i n phi_j)."""

    __slots__ = ('region', 'q', 'n_grid', 'p_grid')

    def __init__(self, region, n_max, p_max):
        self.region = region
        self.q      = np.zeros((region.n_bins, n_max + 1, p_max + 1), dtype=np.complex128)
        self.n_grid = np.arange(n_max + 1, dtype=np.float64)[:, None]
        self.p_grid = np.arange(p_max + 1, dtype=np.float64)[None, :]

    def bin_index(self, kinematic_bin):
        # single-bin regions aggregate over all kinematic bins
        if self.region.n_bins == 1:
            return 0
        return kinematic_bin


class FlowVectorTable:
    """
    Per-event flow vectors for every region of a finalized registry.

    Storage is sized once from the correlators that will read it: a region
    referenced by correlator groups with harmonics h_1..h_m holds all
    harmonics up to sum |h_i| and all powers up to m. The table is owned by
    the per-event processing step and holds nothing across ``clear()``.
    """

    def __init__(self, registry, configs):
        if not registry.finalized:
            raise ConfigurationError("FlowVectorTable needs a finalized region registry.")

        need = {}
        for config in configs:
            for name, (n_max, p_max) in config.moment_requirements().items():
                registry[name]   # undeclared -> ConfigurationError
                n_old, p_old = need.get(name, (0, 1))
                need[name] = (max(n_old, n_max), max(p_old, p_max))

        self.slots = {}
        for region in registry:
            n_max, p_max = need.get(region.name, (0, 1))
            self.slots[region.name] = _Slot(region, n_max, p_max)

        self._order = list(self.slots.values())
        n_cells = sum(s.q.size for s in self._order)
        log.info("FlowVectorTable: %d regions, %d complex cells", len(self._order), n_cells)

    # ── per-event lifecycle ────────────────────────────────────────────

    def clear(self):
        for slot in self._order:
            slot.q.fill(0.0)

    def fill(self, eta, kinematic_bin, phi, weight, tag_mask):
        """Add one particle to every region it belongs to."""
        for slot in self._order:
            region = slot.region
            if not (region.tag & tag_mask) or not region.accepts(eta):
                continue
            ib = slot.bin_index(kinematic_bin)
            if ib < 0 or ib >= region.n_bins:
                continue
            slot.q[ib] += weight ** slot.p_grid * np.exp(1j * slot.n_grid * phi)

    def fill_many(self, eta, bins, phi, weights, tag_masks):
        """Vectorised fill over arrays of particles; same result as repeated fill()."""
        eta       = np.asarray(eta, dtype=np.float64)
        bins      = np.asarray(bins, dtype=np.int64)
        phi       = np.asarray(phi, dtype=np.float64)
        weights   = np.asarray(weights, dtype=np.float64)
        tag_masks = np.asarray(tag_masks, dtype=np.int64)

        for slot in self._order:
            region = slot.region
            sel = ((tag_masks & region.tag) != 0) & region.accepts(eta)
            if region.n_bins == 1:
                ib = np.zeros(np.count_nonzero(sel), dtype=np.int64)
            else:
                sel &= (bins >= 0) & (bins < region.n_bins)
                ib = bins[sel]
            if not np.any(sel):
                continue

            w   = weights[sel][:, None, None]
            ph  = phi[sel][:, None, None]
            val = w ** slot.p_grid[None] * np.exp(1j * slot.n_grid[None] * ph)
            np.add.at(slot.q, ib, val)

    # ── read access ────────────────────────────────────────────────────

    def vector(self, name, bins, n, p):
        """
        Q[n][p] of region ``name`` at ``bins`` (an int or a slice).

        Negative harmonics return the complex conjugate. Single-bin regions
        return a scalar whatever ``bins`` is.
        """
        slot = self.slots[name]
        an   = abs(n)
        if an >= slot.q.shape[1] or p < 0 or p >= slot.q.shape[2]:
            raise ConfigurationError(
                f"Moment (n={n}, p={p}) of region '{name}' was not allocated; "
                f"table holds n<={slot.q.shape[1] - 1}, p<={slot.q.shape[2] - 1}.")
        if slot.region.n_bins == 1:
            value = slot.q[0, an, p]
        else:
            value = slot.q[bins, an, p]
        return np.conj(value) if n < 0 else value

    def get(self, name, kinematic_bin, n, p):
        slot = self.slots[name]
        ib   = slot.bin_index(kinematic_bin)
        if ib < 0 or ib >= slot.region.n_bins:
            raise IndexError(
                f"Bin {kinematic_bin} outside region '{name}' with {slot.region.n_bins} bins.")
        return complex(self.vector(name, ib, n, p))

    def moments(self, name):
        return self.slots[name].q

    def multiplicity(self, name, kinematic_bin=0):
        return self.get(name, kinematic_bin, 0, 1).real
