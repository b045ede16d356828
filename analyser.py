import logging

import numpy as np
import h5py

from parameters import *
import kinematics as kn
from regions import RegionRegistry, ConfigurationError
from flowvectors import FlowVectorTable
from correlators import CorrelatorEngine, build_catalog, correlation_ratios
from accumulators import FlowAccumulators
from weights import LocalDensity

log = logging.getLogger(__name__)

# Particle stream handed to the flow-vector table, one row per particle.
PARTICLE_DTYPE = np.dtype([
    ('eta',    np.float64),
    ('phi',    np.float64),
    ('bin',    np.int64),     # kinematic index, pt_bin + mass_bin * n_pt
    ('weight', np.float64),
    ('tag',    np.int64),     # region membership bits
])

PATHWAYS = ('reco', 'gen')


# ══════════════════════════════════════════════════════════════════════════════
# Section 1: particle stream
# ══════════════════════════════════════════════════════════════════════════════

def _stream(eta, phi, bins, weights, tags):
    out = np.empty(len(eta), dtype=PARTICLE_DTYPE)
    out['eta']    = eta
    out['phi']    = phi
    out['bin']    = bins
    out['weight'] = weights
    out['tag']    = tags
    return out


def tag_tracks(pt, phi, eta, weight_model=None, vtxz=0.0, local_density=None):
    """
    Turn selected charged tracks into stream rows.

    A track is a reference particle inside PT_REF and a charged POI inside
    PT_POI; it may be both, in which case it carries both bits. POI tracks
    are also entered into ``local_density`` (if given) with their weight.

    Parameters
    ----------
    pt, phi, eta  : array-like — track kinematics
    weight_model  : WeightModel or None — corrections under key 'ref'
    vtxz          : float — primary-vertex z, for the acceptance map
    local_density : LocalDensity or None

    Returns
    -------
    np.ndarray of PARTICLE_DTYPE
    """
    pt, phi, eta = (np.asarray(a, dtype=np.float64) for a in (pt, phi, eta))

    is_ref = (pt > PT_REF[0]) & (pt < PT_REF[1])
    is_poi = (pt > PT_POI[0]) & (pt < PT_POI[1])
    tags   = np.where(is_ref, TAG_REF, 0) | np.where(is_poi, TAG_POI, 0)
    keep   = (tags != 0) & (np.abs(eta) < ETA_CUT)

    weights = np.ones(pt.shape, dtype=np.float64)
    if weight_model is not None:
        weights, ok = weight_model.weights('ref', pt, phi, eta, vtxz)
        keep &= ok

    if local_density is not None:
        sel = keep & is_poi
        local_density.fill(phi[sel], weights[sel])

    bins = kn.find_bin(PT_BINS, pt[keep])
    return _stream(eta[keep], phi[keep], bins, weights[keep], tags[keep])


def tag_candidates(species, pt, phi, eta, mass, weight_model=None, vtxz=0.0,
                   local_density=None):
    """
    Turn selected strange-hadron candidates of one species into stream rows.

    The kinematic index combines the species pT and invariant-mass bins;
    candidates outside either axis are dropped. The local-density factor is
    applied only when the weight model asks for it and ``local_density``
    already holds this event's tracks.
    """
    pt, phi, eta, mass = (np.asarray(a, dtype=np.float64) for a in (pt, phi, eta, mass))

    ipt   = kn.find_bin(species.pt_bins, pt)
    imass = kn.find_bin(species.mass_bins, mass)
    bins  = kn.pt_mass_bin(ipt, imass, species.n_pt)
    keep  = (bins >= 0) & (np.abs(eta) < ETA_CUT)

    density = None
    if weight_model is not None and weight_model.local_density and local_density is not None:
        density = local_density.density(phi)

    weights = np.ones(pt.shape, dtype=np.float64)
    if weight_model is not None:
        weights, ok = weight_model.weights(species.name, pt, phi, eta, vtxz, density)
        keep &= ok

    tags = np.full(np.count_nonzero(keep), species.tag, dtype=np.int64)
    return _stream(eta[keep], phi[keep], bins[keep], weights[keep], tags)


def tag_generated(pt, phi, eta, species=None):
    """
    Generator-level particles with unit weight.

    ``species=None`` means charged primaries (reference, truth tag);
    otherwise the species truth tag and pT bin are used. There is no mass axis.
    """
    pt, phi, eta = (np.asarray(a, dtype=np.float64) for a in (pt, phi, eta))

    if species is None:
        keep = (pt > PT_REF[0]) & (pt < PT_REF[1]) & (np.abs(eta) < ETA_CUT)
        bins = kn.find_bin(PT_BINS, pt)
        tag  = TAG_REF_MC
    else:
        bins = kn.find_bin(species.pt_bins, pt)
        keep = (bins >= 0) & (np.abs(eta) < ETA_CUT)
        tag  = species.mc_tag

    n = np.count_nonzero(keep)
    return _stream(eta[keep], phi[keep], bins[keep],
                   np.ones(n), np.full(n, tag, dtype=np.int64))


def assemble_reco_event(tracks, candidates, weight_model=None, vtxz=0.0):
    """
    Full reconstructed-level stream of one event.

    tracks     : structured array with fields pt, phi, eta
    candidates : {species name: structured array with fields pt, phi, eta, mass}
    """
    density = None
    if weight_model is not None and weight_model.local_density:
        density = LocalDensity(weight_model.delta_phi_bins)

    parts = [tag_tracks(tracks['pt'], tracks['phi'], tracks['eta'],
                        weight_model, vtxz, density)]
    for name, cand in candidates.items():
        parts.append(tag_candidates(SPECIES[name], cand['pt'], cand['phi'], cand['eta'],
                                    cand['mass'], weight_model, vtxz, density))
    return np.concatenate(parts)


def assemble_gen_event(tracks, particles):
    """Generator-level stream: charged primaries plus truth strange hadrons."""
    parts = [tag_generated(tracks['pt'], tracks['phi'], tracks['eta'])]
    for name, part in particles.items():
        parts.append(tag_generated(part['pt'], part['phi'], part['eta'], SPECIES[name]))
    return np.concatenate(parts)


# ══════════════════════════════════════════════════════════════════════════════
# Section 2: per-event driver
# ══════════════════════════════════════════════════════════════════════════════

class FlowAnalysis:
    """
    Everything one node needs to turn events into correlator profiles.

    The region registry, the parsed correlator catalog and the flow-vector
    table are built once here. ``process_event`` then runs
    clear -> fill -> jackknife draw -> evaluate -> accumulate for one
    event of the requested pathway.
    """

    def __init__(self, regions=REGIONS, correlators=CORRELATORS, channels=CHANNELS,
                 centrality_edges=CENT_BINS, n_subsamples=OPTIONS['n_subsamples'],
                 jackknife=OPTIONS['do_jackknife'], seed=OPTIONS['seed']):

        self.registry = RegionRegistry()
        for name, eta_min, eta_max, n_bins, tag in regions:
            self.registry.declare(name, eta_min, eta_max, n_bins, tag)
        self.registry.finalize()

        self.centrality_edges = np.asarray(centrality_edges, dtype=np.float64)
        self.n_cent           = len(self.centrality_edges) - 1

        self.catalog  = {}
        self.channels = {}
        for pathway, definitions in correlators.items():
            self.catalog[pathway]  = build_catalog(definitions, self.registry)
            self.channels[pathway] = dict(channels.get(pathway, {}))
            self._check_channels(pathway)

        all_configs = [c for configs in self.catalog.values() for c in configs]
        self.table  = FlowVectorTable(self.registry, all_configs)
        self.engine = CorrelatorEngine(self.table)

        # one stream per pathway plus one shared by the pathways of a physical event
        seeds = np.random.SeedSequence(seed).spawn(len(self.catalog) + 1)
        self.rng = np.random.default_rng(seeds[-1])
        self.accumulators = {
            pathway: FlowAccumulators(self.channels[pathway], self.n_cent,
                                      n_subsamples, jackknife, sub_seed)
            for pathway, sub_seed in zip(self.catalog, seeds)
        }
        self.n_events = {pathway: np.zeros(self.n_cent, dtype=np.int64)
                         for pathway in self.catalog}

        log.info("FlowAnalysis: %s", ", ".join(
            f"{pw}: {len(cfg)} correlators -> {len(self.channels[pw])} channels"
            for pw, cfg in self.catalog.items()))

    def _check_channels(self, pathway):
        shapes = self.channels[pathway]
        for config in self.catalog[pathway]:
            if config.label not in shapes:
                raise ConfigurationError(
                    f"Correlator '{config.expression}' feeds undeclared channel "
                    f"'{config.label}' ({pathway}).")
            n_pt, n_mass = shapes[config.label]
            if n_pt * n_mass != config.n_bins:
                raise ConfigurationError(
                    f"Channel '{config.label}' is {n_pt}x{n_mass} but correlator "
                    f"'{config.expression}' spans {config.n_bins} kinematic bins.")

    @property
    def n_subsamples(self):
        return next(iter(self.accumulators.values())).n_subsamples

    def draw_subsample(self):
        """
        Jackknife slice for one physical event, to be passed to every
        pathway of that event so reco and gen leave out the same events.
        """
        if self.n_subsamples == 0:
            return 0
        return int(self.rng.integers(1, self.n_subsamples + 1))

    def process_event(self, particles, centrality, pathway='reco', subsample=None):
        """
        Accumulate one event.

        ``subsample`` is the jackknife slice the event is left out of, as
        returned by draw_subsample(); None draws from the pathway's own
        stream. Returns False (and touches nothing) if the centrality falls
        outside the class edges.
        """
        icent = kn.find_bin(self.centrality_edges, centrality)
        if icent < 0:
            return False

        acc = self.accumulators[pathway]
        self.table.clear()
        self.table.fill_many(particles['eta'], particles['bin'], particles['phi'],
                             particles['weight'], particles['tag'])
        acc.start_event(subsample)
        self.n_events[pathway][icent] += 1

        for config in self.catalog[pathway]:
            numerators, denominators = self.engine.evaluate_bins(config)
            values, ok = correlation_ratios(numerators, denominators)
            if not np.any(ok):
                continue
            k = np.nonzero(ok)[0]
            n_pt, _ = self.channels[pathway][config.label]
            ipt, imass = kn.split_pt_mass_bin(k, n_pt)
            acc.push(config.label, icent, ipt, imass, values[ok], denominators[ok])
        return True


# ══════════════════════════════════════════════════════════════════════════════
# Section 3: HDF5 output
# ══════════════════════════════════════════════════════════════════════════════

def _write_set(group, acc_set):
    for label, profile in acc_set.items():
        grp = group.create_group(label)
        for key, arr in profile.arrays().items():
            grp.create_dataset(key, data=arr,
                               compression='gzip', compression_opts=4)


def save_hdf5(filename, analysis, node_id=0):
    """
    Write the per-node correlator profiles and run metadata to an HDF5 file.

    File structure
    --------------
    /metadata/
        attrs: node_id, cent_bins, n_subsamples, pathways, harmonic
        channels/<pathway>/
            attrs: one (n_pt, n_mass) attr per channel
        correlators/<pathway>/
            attrs: expressions, labels

    /<pathway>/
        attrs: n_events (per centrality class), subsample_events
        full/<channel>/{sum_w, sum_wy, sum_wy2, sum_w2, entries}
        jackknife/<j>/<channel>/{...}                  j = 1 .. n_subsamples

    Every dataset has shape (n_cent, n_pt, n_mass).
    """
    with h5py.File(filename, 'w') as f:

        # ── metadata group ─────────────────────────────────────────────────
        meta = f.create_group('metadata')
        meta.attrs['node_id']      = node_id
        meta.attrs['cent_bins']    = analysis.centrality_edges
        meta.attrs['n_subsamples'] = analysis.n_subsamples
        meta.attrs['pathways']     = list(analysis.catalog.keys())
        meta.attrs['harmonic']     = HARMONIC

        for pathway, shapes in analysis.channels.items():
            grp = meta.create_group(f'channels/{pathway}')
            for label, shape in shapes.items():
                grp.attrs[label] = np.array(shape, dtype=np.int64)

        for pathway, configs in analysis.catalog.items():
            grp = meta.create_group(f'correlators/{pathway}')
            grp.attrs['expressions'] = [c.expression for c in configs]
            grp.attrs['labels']      = [c.label for c in configs]

        # ── accumulated profiles ───────────────────────────────────────────
        for pathway, acc in analysis.accumulators.items():
            pw = f.create_group(pathway)
            pw.attrs['n_events']         = analysis.n_events[pathway]
            pw.attrs['subsample_events'] = acc.subsample_events
            _write_set(pw.create_group('full'), acc.full)
            for j, subsample in enumerate(acc.subsamples, start=1):
                _write_set(pw.create_group(f'jackknife/{j}'), subsample)


# ══════════════════════════════════════════════════════════════════════════════
# Section 4: sanity checks
# ══════════════════════════════════════════════════════════════════════════════

def sanity_check(analysis):
    """
    Print event counts and filled cells per channel so an empty output is
    obvious before the file is shipped off the node.
    """
    print("=" * 55)
    print("Sanity check — accumulated correlators")
    for pathway, acc in analysis.accumulators.items():
        n_ev = analysis.n_events[pathway]
        print(f"  [{pathway}] events accepted : {n_ev.sum()}  "
              f"(per class: {' '.join(str(n) for n in n_ev)})")
        for label, profile in acc.full.items():
            filled = np.count_nonzero(profile.entries)
            print(f"    {label:18s} cells filled {filled:6d} / {profile.entries.size:6d}")
        if acc.n_subsamples:
            print(f"    jackknife events per subsample : "
                  f"{acc.subsample_events.min()} — {acc.subsample_events.max()}")
    print("=" * 55)
