import logging

import numpy as np

import kinematics as kn
from parameters import SPECIES

log = logging.getLogger(__name__)

# Local-density histogram: 400 bins over [-2pi, 2pi), i.e. 200 bins per turn.
LOC_DEN_BINS  = 400
LOC_DEN_EDGES = np.linspace(-kn.TWO_PI, kn.TWO_PI, LOC_DEN_BINS + 1)
BINS_PER_TURN = LOC_DEN_BINS // 2


class EfficiencyCurve:
    """
    Reconstruction efficiency in pT bins.

    Outside the binning the efficiency is 0, which rejects the particle.
    """

    def __init__(self, edges, values):
        self.edges  = np.asarray(edges, dtype=np.float64)
        self.values = np.asarray(values, dtype=np.float64)
        if len(self.values) != len(self.edges) - 1:
            raise ValueError(
                f"Efficiency curve has {len(self.edges) - 1} bins "
                f"but {len(self.values)} values.")

    def efficiency(self, pt):
        ib  = kn.find_bin(self.edges, pt)
        out = np.where(np.asarray(ib) >= 0, self.values[np.maximum(ib, 0)], 0.0)
        return float(out) if np.ndim(out) == 0 else out


class AcceptanceMap:
    """
    Non-uniform-acceptance weights on a (phi, eta, vtx_z) grid.

    Particles outside the map get weight 1.
    """

    def __init__(self, phi_edges, eta_edges, vz_edges, weights):
        self.phi_edges = np.asarray(phi_edges, dtype=np.float64)
        self.eta_edges = np.asarray(eta_edges, dtype=np.float64)
        self.vz_edges  = np.asarray(vz_edges, dtype=np.float64)
        self.weights   = np.asarray(weights, dtype=np.float64)
        expected = (len(self.phi_edges) - 1, len(self.eta_edges) - 1, len(self.vz_edges) - 1)
        if self.weights.shape != expected:
            raise ValueError(
                f"Acceptance weights have shape {self.weights.shape}, "
                f"binning implies {expected}.")

    def weight(self, phi, eta, vtxz):
        iphi = np.asarray(kn.find_bin(self.phi_edges, phi))
        ieta = np.asarray(kn.find_bin(self.eta_edges, eta))
        ivz  = np.asarray(kn.find_bin(self.vz_edges, vtxz))
        iphi, ieta, ivz = np.broadcast_arrays(iphi, ieta, ivz)
        inside = (iphi >= 0) & (ieta >= 0) & (ivz >= 0)
        out = np.where(inside,
                       self.weights[np.maximum(iphi, 0), np.maximum(ieta, 0), np.maximum(ivz, 0)],
                       1.0)
        return float(out) if np.ndim(out) == 0 else out


class LocalDensity:
    """
    Per-event azimuthal density of charged POI tracks.

    Every track is entered twice, at phi and at phi - 2pi, so a window of
    +-delta bins around any angle in [-pi, pi) never runs off the edge.
    """

    def __init__(self, delta_phi_bins=3):
        self.delta  = int(delta_phi_bins)
        self.counts = np.zeros(LOC_DEN_BINS, dtype=np.float64)

    def clear(self):
        self.counts.fill(0.0)

    def fill(self, phi, weight=1.0):
        phi    = np.atleast_1d(kn.constrain_angle(np.asarray(phi, dtype=np.float64), 0.0))
        weight = np.broadcast_to(np.asarray(weight, dtype=np.float64), phi.shape)
        for shifted in (phi, kn.constrain_angle(phi, -kn.TWO_PI)):
            ib = np.atleast_1d(kn.find_bin(LOC_DEN_EDGES, shifted))
            ok = ib >= 0
            np.add.at(self.counts, ib[ok], weight[ok])

    def density(self, phi):
        """Summed content of the bins within +-delta of phi (phi taken modulo 2pi)."""
        ib = np.asarray(kn.find_bin(LOC_DEN_EDGES, kn.constrain_angle(phi, -np.pi)))
        cs = np.concatenate(([0.0], np.cumsum(self.counts)))
        lo = np.clip(ib - self.delta, 0, LOC_DEN_BINS)
        hi = np.clip(ib + self.delta + 1, 0, LOC_DEN_BINS)
        out = cs[hi] - cs[lo]
        return float(out) if np.ndim(out) == 0 else out


def local_density_weight(species, pt, density, delta):
    """
    1 / eff(rho) with eff = exp(A*rho + B).

    rho is the windowed density scaled to a full turn; (A, B) are read
    from the species table at the pT bin. Outside the table the weight is 1.
    """
    ipt = np.asarray(kn.find_bin(species.pt_bins, pt))
    par = np.asarray(species.loc_den, dtype=np.float64).reshape(-1, 2)
    safe = np.clip(ipt, 0, len(par) - 1)
    a, b = par[safe, 0], par[safe, 1]
    rho  = np.asarray(density, dtype=np.float64) * BINS_PER_TURN / (2 * delta + 1)
    out  = np.where(ipt >= 0, np.exp(-(a * rho + b)), 1.0)
    return float(out) if np.ndim(out) == 0 else out


class WeightModel:
    """
    Per-particle weight = acceptance x 1/efficiency x local-density factor.

    ``efficiency`` and ``acceptance`` map a population key ('ref' or a
    species name) to an EfficiencyCurve / AcceptanceMap. A key without a
    calibration contributes a factor 1. Zero efficiency rejects the particle.
    """

    def __init__(self, efficiency=None, acceptance=None, local_density=False,
                 delta_phi_bins=3, species=None):
        self.efficiency     = dict(efficiency or {})
        self.acceptance     = dict(acceptance or {})
        self.local_density  = bool(local_density)
        self.delta_phi_bins = int(delta_phi_bins)
        self.species        = dict(SPECIES if species is None else species)
        if self.efficiency or self.acceptance:
            log.info("WeightModel: efficiency for %s, acceptance for %s",
                     sorted(self.efficiency), sorted(self.acceptance))

    def weight(self, key, pt, phi, eta, vtxz, density=None):
        """Scalar weight of one particle, or None if it must be dropped."""
        w, ok = self.weights(key, np.array([pt]), np.array([phi]), np.array([eta]), vtxz,
                             None if density is None else np.array([density]))
        return float(w[0]) if ok[0] else None

    def weights(self, key, pt, phi, eta, vtxz, density=None):
        """Vectorised weights: (weights, accepted mask)."""
        pt  = np.asarray(pt, dtype=np.float64)
        w   = np.ones(pt.shape, dtype=np.float64)
        ok  = np.ones(pt.shape, dtype=bool)

        curve = self.efficiency.get(key)
        if curve is not None:
            eff = np.asarray(curve.efficiency(pt))
            ok  = eff != 0
            w   = np.where(ok, 1.0 / np.where(ok, eff, 1.0), 0.0)

        nua = self.acceptance.get(key)
        if nua is not None:
            w = w * nua.weight(phi, eta, vtxz)

        if self.local_density and density is not None and key in self.species:
            w = w * local_density_weight(self.species[key], pt, density, self.delta_phi_bins)

        return w, ok
