import numpy as np
from dataclasses import dataclass
# Global definitions for the flow analysis: axes, region table, correlator catalog, species.
# Everything here is read once at start-up and never mutated afterwards.

# ── centrality classes ─────────────────────────────────────────────────
# Percentile edges of the FT0C-like estimator, most central first.
CENT_BINS  = np.array([0, 5, 10, 20, 30, 40, 50, 60, 70, 80, 90], dtype=np.float64)
N_CENT     = len(CENT_BINS) - 1
CENT_LABELS = [f'{int(CENT_BINS[i])}-{int(CENT_BINS[i+1])}' for i in range(N_CENT)]

# ── charged-particle pT grid ───────────────────────────────────────────
# Variable width: 50 MeV steps up to 1 GeV, coarser towards high pT.
PT_BINS  = np.array([0.20, 0.25, 0.30, 0.35, 0.40, 0.45, 0.50, 0.55, 0.60, 0.65,
                     0.70, 0.75, 0.80, 0.85, 0.90, 0.95, 1.00, 1.10, 1.20, 1.30,
                     1.40, 1.50, 1.60, 1.70, 1.80, 1.90, 2.00, 2.20, 2.40, 2.60,
                     2.80, 3.00, 3.50, 4.00, 4.50, 5.00, 5.50, 6.00, 10.0])
PT_CENTS = 0.5 * (PT_BINS[:-1] + PT_BINS[1:])
N_PT     = len(PT_CENTS)

# ── strange-hadron pT grid (shared by V0s and cascades) ────────────────
PT_BINS_STRANGE  = np.array([0.9, 1.1, 1.3, 1.5, 1.7, 1.9, 2.1, 2.3, 2.5, 2.7,
                             2.9, 3.9, 4.9, 5.9, 9.9])
PT_CENTS_STRANGE = 0.5 * (PT_BINS_STRANGE[:-1] + PT_BINS_STRANGE[1:])
N_PT_STRANGE     = len(PT_CENTS_STRANGE)

# ── kinematic acceptance of the particle stream ────────────────────────
ETA_CUT    = 0.8
PT_REF     = [0.2, 10.0]   # reference tracks
PT_POI     = [0.2, 10.0]   # charged points of interest

# Flow harmonic used by the catalog below.
HARMONIC = 2

# ── region membership tags ─────────────────────────────────────────────
# One bit per population. A particle may carry several bits at once,
# e.g. a track that is both reference and point of interest.
TAG_REF       = 1
TAG_XI        = 2
TAG_OMEGA     = 4
TAG_K0S       = 8
TAG_LAMBDA    = 16
TAG_POI       = 32
TAG_REF_MC    = 64
TAG_XI_MC     = 128
TAG_OMEGA_MC  = 256
TAG_K0S_MC    = 512
TAG_LAMBDA_MC = 1024


@dataclass(frozen=True)
class SpeciesInfo:
    """Everything the analysis needs to know about one strange-hadron species."""
    name:       str
    pdg:        int
    tag:        int
    mc_tag:     int
    pt_bins:    np.ndarray
    mass_axis:  tuple          # (n_bins, m_min, m_max) in GeV
    loc_den:    tuple          # (A0, B0, A1, B1, ...) per pT bin, eff = exp(A*rho + B)

    @property
    def n_pt(self):
        return len(self.pt_bins) - 1

    @property
    def n_mass(self):
        return self.mass_axis[0]

    @property
    def mass_bins(self):
        n, lo, hi = self.mass_axis
        return np.linspace(lo, hi, n + 1)

    @property
    def mass_cents(self):
        edges = self.mass_bins
        return 0.5 * (edges[:-1] + edges[1:])


# Local-density efficiency parameters, one (A, B) pair per strange pT bin.
LOC_DEN_K0S = (
    -0.00043057, -3.2435, -0.000385085, -2.97687, -0.000350298, -2.81502,
    -0.000326159, -2.71091, -0.000299563, -2.65448, -0.000294284, -2.60865,
    -0.000277938, -2.589, -0.000277091, -2.56983, -0.000272783, -2.56825,
    -0.000252706, -2.58996, -0.000247834, -2.63158, -0.00024379, -2.76976,
    -0.000286468, -2.92484, -0.000310149, -3.27746)
LOC_DEN_LAMBDA = (
    -0.000510948, -4.4846, -0.000460629, -4.14465, -0.000433729, -3.94173,
    -0.000412751, -3.81839, -0.000411211, -3.72502, -0.000401511, -3.68426,
    -0.000407461, -3.67005, -0.000379371, -3.71153, -0.000392828, -3.73214,
    -0.000403996, -3.80717, -0.000403376, -3.90917, -0.000354624, -4.34629,
    -0.000477606, -4.66307, -0.000541139, -4.61364)
LOC_DEN_XI = (
    -0.000986187, -3.86861, -0.000912481, -3.29206, -0.000859271, -2.89389,
    -0.000817039, -2.61201, -0.000788792, -2.39079, -0.000780182, -2.19276,
    -0.000750457, -2.07205, -0.000720279, -1.96865, -0.00073247, -1.85642,
    -0.000695091, -1.82625, -0.000693332, -1.72679, -0.000681225, -1.74305,
    -0.000652818, -1.92608, -0.000618892, -2.31985)
LOC_DEN_OMEGA = (
    -0.000444324, -6.0424, -0.000566208, -5.42168, -0.000580338, -4.96967,
    -0.000721054, -4.41994, -0.000626394, -4.27934, -0.000652167, -3.9543,
    -0.000592327, -3.79053, -0.000544721, -3.73292, -0.000613419, -3.43849,
    -0.000402506, -3.47687, -0.000602687, -3.24491, -0.000460848, -3.056,
    -0.00039428, -2.35188, -0.00041908, -2.03642)

# Species to track: name -> SpeciesInfo.
SPECIES = {
    'K0s':    SpeciesInfo('K0s',    310,  TAG_K0S,    TAG_K0S_MC,
                          PT_BINS_STRANGE, (80, 0.40, 0.60), LOC_DEN_K0S),
    'Lambda': SpeciesInfo('Lambda', 3122, TAG_LAMBDA, TAG_LAMBDA_MC,
                          PT_BINS_STRANGE, (32, 1.08, 1.16), LOC_DEN_LAMBDA),
    'Xi':     SpeciesInfo('Xi',     3312, TAG_XI,     TAG_XI_MC,
                          PT_BINS_STRANGE, (14, 1.30, 1.37), LOC_DEN_XI),
    'Omega':  SpeciesInfo('Omega',  3334, TAG_OMEGA,  TAG_OMEGA_MC,
                          PT_BINS_STRANGE, (16, 1.63, 1.71), LOC_DEN_OMEGA),
}

# ── regions ────────────────────────────────────────────────────────────
# (name, eta_min, eta_max, n_kinematic_bins, tag)
# Strange-hadron POI regions are indexed by pt_bin + mass_bin * n_pt.
REGIONS = [
    ('reffull',    -0.8,  0.8, 1,    TAG_REF),
    ('refN10',     -0.8, -0.4, 1,    TAG_REF),
    ('refP10',      0.4,  0.8, 1,    TAG_REF),
    ('poiN10dpt',  -0.8, -0.4, N_PT, TAG_POI),
    ('poiP10dpt',   0.4,  0.8, N_PT, TAG_POI),
    ('poifulldpt', -0.8,  0.8, N_PT, TAG_POI),
    ('poioldpt',   -0.8,  0.8, N_PT, TAG_REF),
    ('refN10MC',   -0.8, -0.4, 1,    TAG_REF_MC),
    ('refP10MC',    0.4,  0.8, 1,    TAG_REF_MC),
]
for _sp in SPECIES.values():
    _n_reco = _sp.n_pt * _sp.n_mass
    REGIONS += [
        (f'poi{_sp.name}Pdpt',     0.4,  0.8, _n_reco,   _sp.tag),
        (f'poi{_sp.name}Ndpt',    -0.8, -0.4, _n_reco,   _sp.tag),
        (f'poi{_sp.name}fulldpt', -0.8,  0.8, _n_reco,   _sp.tag),
        # truth level has no mass axis
        (f'poi{_sp.name}PdptMC',   0.4,  0.8, _sp.n_pt,  _sp.mc_tag),
        (f'poi{_sp.name}NdptMC',  -0.8, -0.4, _sp.n_pt,  _sp.mc_tag),
    ]

# ── correlator catalog ─────────────────────────────────────────────────
# pathway -> [(expression, output channel, pT-differential)]
# Both gap orientations (a/b) of a two-particle correlator feed one channel.
CORRELATORS = {
    'reco': [
        ('refP10 {2} refN10 {-2}',                        'c22',        False),
        ('reffull reffull {2 2 -2 -2}',                   'c24',        False),
        ('reffull {2 -2}',                                'c22full',    False),
        ('poiP10dpt {2} refN10 {-2}',                     'c22dpt',     True),
        ('poiN10dpt {2} refP10 {-2}',                     'c22dpt',     True),
        ('poifulldpt reffull | poioldpt {2 2 -2 -2}',     'c24dpt',     True),
        ('poifulldpt reffull | poioldpt {2 -2}',          'c22fulldpt', True),
    ],
    'gen': [
        ('refP10MC {2} refN10MC {-2}',                    'c22MC',      False),
    ],
}
for _sp in SPECIES.values():
    CORRELATORS['reco'] += [
        (f'poi{_sp.name}Pdpt {{2}} refN10 {{-2}}',        f'{_sp.name}c22dpt', True),
        (f'poi{_sp.name}Ndpt {{2}} refP10 {{-2}}',        f'{_sp.name}c22dpt', True),
        (f'poi{_sp.name}fulldpt reffull {{2 2 -2 -2}}',   f'{_sp.name}c24dpt', True),
    ]
    CORRELATORS['gen'] += [
        (f'poi{_sp.name}PdptMC {{2}} refN10MC {{-2}}',    f'{_sp.name}c22dptMC', True),
        (f'poi{_sp.name}NdptMC {{2}} refP10MC {{-2}}',    f'{_sp.name}c22dptMC', True),
    ]

# ── output channels ────────────────────────────────────────────────────
# pathway -> {channel: (n_pt, n_mass)}; profiles are (N_CENT, n_pt, n_mass).
CHANNELS = {
    'reco': {
        'c22':        (1, 1),
        'c24':        (1, 1),
        'c22full':    (1, 1),
        'c22dpt':     (N_PT, 1),
        'c24dpt':     (N_PT, 1),
        'c22fulldpt': (N_PT, 1),
    },
    'gen': {
        'c22MC':      (1, 1),
    },
}
for _sp in SPECIES.values():
    CHANNELS['reco'][f'{_sp.name}c22dpt']  = (_sp.n_pt, _sp.n_mass)
    CHANNELS['reco'][f'{_sp.name}c24dpt']  = (_sp.n_pt, _sp.n_mass)
    CHANNELS['gen'][f'{_sp.name}c22dptMC'] = (_sp.n_pt, 1)

# ── run switches ───────────────────────────────────────────────────────
OPTIONS = {
    'do_jackknife':      True,
    'n_subsamples':      10,
    'do_acc_eff_corr':   False,
    'do_loc_den_corr':   False,
    'delta_phi_loc_den': 3,      # half-width of the local-density window, in 2pi/200 bins
    'seed':              None,
}
