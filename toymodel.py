import numpy as np

from parameters import *
import kinematics as kn

# Synthetic events with a known elliptic flow, for closure tests and for
# exercising the full per-node chain without detector input.

KINE_DTYPE = np.dtype([('pt', np.float64), ('phi', np.float64), ('eta', np.float64)])
CAND_DTYPE = np.dtype([('pt', np.float64), ('phi', np.float64), ('eta', np.float64),
                       ('mass', np.float64)])

# Nominal masses (GeV) used for the invariant-mass peaks.
PDG_MASS = {
    'K0s':    0.497611,
    'Lambda': 1.115683,
    'Xi':     1.32171,
    'Omega':  1.67245,
}

# Mean number of candidates per event in the most central class.
CANDIDATE_YIELD = {'K0s': 40.0, 'Lambda': 20.0, 'Xi': 4.0, 'Omega': 1.0}


def v2_of_centrality(cent):
    """Smooth toy v2(centrality): rises from peripheral overlap geometry, saturates."""
    return 0.03 + 0.07 * np.sin(np.pi * np.clip(cent, 0.0, 90.0) / 110.0)


class ToyModel:
    """
    Event generator with dN/dphi ~ 1 + 2 v2 cos 2(phi - Psi).

    Parameters
    ----------
    seed          : int or None — seed of the numpy Generator
    multiplicity  : float — mean number of charged tracks in |eta| < 1 for 0% centrality
    v2            : float or None — fixed v2 for every event (None -> v2_of_centrality)
    v2_species    : float or None — v2 of the strange hadrons (None -> same as tracks)
    signal_frac   : float — fraction of candidates on the mass peak, rest flat background
    """

    def __init__(self, seed=None, multiplicity=600.0, v2=None, v2_species=None,
                 signal_frac=0.8, centrality_range=(0.0, 90.0)):
        self.rng              = np.random.default_rng(seed)
        self.multiplicity     = float(multiplicity)
        self.v2               = v2
        self.v2_species       = v2_species
        self.signal_frac      = float(signal_frac)
        self.centrality_range = centrality_range

    # ── building blocks ────────────────────────────────────────────────

    def sample_phi(self, n, v2, psi):
        """Accept-reject sampling of n azimuths in [0, 2pi)."""
        out  = np.empty(0)
        need = n
        while need > 0:
            phi  = self.rng.uniform(0.0, kn.TWO_PI, 2 * need + 16)
            pdf  = 1.0 + 2.0 * v2 * np.cos(HARMONIC * (phi - psi))
            keep = self.rng.uniform(0.0, 1.0 + 2.0 * abs(v2), len(phi)) < pdf
            out  = np.concatenate([out, phi[keep]])
            need = n - len(out)
        return out[:n]

    def sample_kinematics(self, n, v2, psi, pt_min, slope):
        out = np.empty(n, dtype=KINE_DTYPE)
        out['pt']  = pt_min + self.rng.exponential(slope, n)
        out['phi'] = self.sample_phi(n, v2, psi)
        out['eta'] = self.rng.uniform(-1.0, 1.0, n)
        return out

    def sample_candidates(self, species, n, v2, psi):
        """Candidates of one species: a Gaussian peak on a flat background."""
        n_bins, lo, hi = species.mass_axis
        kine = self.sample_kinematics(n, v2, psi, PT_BINS_STRANGE[0], 1.2)

        out = np.empty(n, dtype=CAND_DTYPE)
        for key in ('pt', 'phi', 'eta'):
            out[key] = kine[key]
        signal      = self.rng.uniform(size=n) < self.signal_frac
        sigma       = (hi - lo) / 20.0
        out['mass'] = np.where(signal,
                               self.rng.normal(PDG_MASS[species.name], sigma, n),
                               self.rng.uniform(lo, hi, n))
        return out, signal

    # ── full event ─────────────────────────────────────────────────────

    def generate_event(self):
        """
        Returns
        -------
        dict with keys
            centrality, vtxz, psi, v2  : floats
            tracks                     : KINE_DTYPE array, reconstructed charged tracks
            candidates                 : {species: CAND_DTYPE array}
            gen_tracks                 : KINE_DTYPE array, charged primaries
            gen_particles              : {species: KINE_DTYPE array}, true strange hadrons
        """
        cent = self.rng.uniform(*self.centrality_range)
        psi  = self.rng.uniform(0.0, np.pi)
        v2   = v2_of_centrality(cent) if self.v2 is None else self.v2
        v2s  = v2 if self.v2_species is None else self.v2_species
        vtxz = self.rng.normal(0.0, 5.0)

        scale = (1.0 - cent / 100.0)**2
        n_ch  = self.rng.poisson(self.multiplicity * scale) + 4
        gen_tracks = self.sample_kinematics(n_ch, v2, psi, PT_BINS[0], 0.5)

        # 90% tracking efficiency, independent of kinematics
        tracks = gen_tracks[self.rng.uniform(size=n_ch) < 0.9]

        candidates, gen_particles = {}, {}
        for name, species in SPECIES.items():
            n = self.rng.poisson(CANDIDATE_YIELD[name] * scale)
            cand, signal = self.sample_candidates(species, n, v2s, psi)
            candidates[name] = cand
            truth = np.empty(np.count_nonzero(signal), dtype=KINE_DTYPE)
            for key in ('pt', 'phi', 'eta'):
                truth[key] = cand[key][signal]
            gen_particles[name] = truth

        return {
            'centrality':    cent,
            'vtxz':          vtxz,
            'psi':           psi,
            'v2':            v2,
            'tracks':        tracks,
            'candidates':    candidates,
            'gen_tracks':    gen_tracks,
            'gen_particles': gen_particles,
        }

    def generate(self, n_events):
        for _ in range(n_events):
            yield self.generate_event()
