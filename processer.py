import numpy as np
import h5py

from accumulators import FlowAccumulators, Profile


def inspect_hdf5(filename, max_depth=None):
    """
    Print the layout of a node file: groups with their attributes, datasets
    with shape and dtype. The walk stops below ``max_depth`` levels; the
    jackknife replicas repeat the full-sample layout ten times over.
    """
    with h5py.File(filename, 'r') as f:

        print(f"File: {filename}")
        print("=" * 55)

        def show(name, obj):
            depth = name.count('/') + 1
            if max_depth is not None and depth > max_depth:
                return
            pad = '  ' * (depth - 1)
            if isinstance(obj, h5py.Dataset):
                print(f"{pad}/{name}  shape={obj.shape}  dtype={obj.dtype}")
                return
            print(f"{pad}/{name}/")
            for key, value in obj.attrs.items():
                print(f"{pad}    @{key} = {value}")

        f.visititems(show)


def _read_set(group, acc_set):
    for label in list(acc_set):
        grp = group[label]
        arrays = {key: grp[key][:] for key in Profile.FIELDS}
        acc_set.profiles[label] = Profile.from_arrays(label, arrays)


def load_hdf5(filename):
    """
    Load one per-node file back into accumulators.

    Centrality edges, subsample count and channel shapes are taken from the
    file's metadata, so the post-processing does not depend on the
    definitions in parameters.py.

    Returns
    -------
    dict with keys
        cent_bins    : np.ndarray
        n_subsamples : int
        node_ids     : list of int
        channels     : {pathway: {channel: (n_pt, n_mass)}}
        n_events     : {pathway: np.ndarray (n_cent,)}
        accumulators : {pathway: FlowAccumulators}
    """
    with h5py.File(filename, 'r') as f:
        meta = f['metadata']

        cent_bins    = np.asarray(meta.attrs['cent_bins'], dtype=np.float64)
        n_subsamples = int(meta.attrs['n_subsamples'])
        n_cent       = len(cent_bins) - 1

        channels, n_events, accumulators = {}, {}, {}
        for pathway in meta['channels']:
            shapes = {label: tuple(int(x) for x in shape)
                      for label, shape in meta[f'channels/{pathway}'].attrs.items()}
            acc = FlowAccumulators(shapes, n_cent, n_subsamples,
                                   jackknife=n_subsamples > 0)

            pw = f[pathway]
            _read_set(pw['full'], acc.full)
            for j, subsample in enumerate(acc.subsamples, start=1):
                _read_set(pw[f'jackknife/{j}'], subsample)

            acc.n_events         = int(pw.attrs['n_events'].sum())
            acc.subsample_events = np.asarray(pw.attrs['subsample_events'], dtype=np.int64)

            channels[pathway]     = shapes
            n_events[pathway]     = np.asarray(pw.attrs['n_events'], dtype=np.int64)
            accumulators[pathway] = acc

        return {
            'cent_bins':    cent_bins,
            'n_subsamples': n_subsamples,
            'node_ids':     [int(meta.attrs['node_id'])],
            'channels':     channels,
            'n_events':     n_events,
            'accumulators': accumulators,
        }


def merge_files(filenames):
    """
    Fold per-node outputs into one result.

    All files must share centrality edges, subsample count and channel
    layout; anything else raises ValueError.
    """
    if len(filenames) == 0:
        raise ValueError("No files to merge.")

    merged = None
    for ifile, fname in enumerate(filenames):
        res = load_hdf5(fname)

        if merged is None:
            merged = res
        else:
            if not np.array_equal(res['cent_bins'], merged['cent_bins']):
                raise ValueError(
                    f"{fname}: centrality edges {res['cent_bins']} differ from "
                    f"{merged['cent_bins']}.")
            if res['n_subsamples'] != merged['n_subsamples']:
                raise ValueError(
                    f"{fname}: {res['n_subsamples']} subsamples, "
                    f"expected {merged['n_subsamples']}.")
            if res['channels'] != merged['channels']:
                raise ValueError(f"{fname}: channel layout differs from the first file.")

            for pathway, acc in res['accumulators'].items():
                merged['accumulators'][pathway].merge(acc)
                merged['n_events'][pathway] += res['n_events'][pathway]
            merged['node_ids'] += res['node_ids']

        if (ifile + 1) % 50 == 0 or ifile + 1 == len(filenames):
            print(f"  {ifile+1}/{len(filenames)} files merged")

    print(f"\nMerge complete:")
    print(f"  Files     : {len(filenames)}")
    for pathway, n_ev in merged['n_events'].items():
        print(f"  {pathway:5s} events : {n_ev.sum()}")
    return merged


# ══════════════════════════════════════════════════════════════════════════════
# Cumulants and flow coefficients
# ══════════════════════════════════════════════════════════════════════════════

def jackknife_error(values):
    """
    Jackknife spread of subsample estimates along axis 0:

        sigma = sqrt( (N-1)/N * sum_j (x_j - <x>)^2 )

    NaN entries (empty or unphysical subsamples) are left out and N counts
    only the finite ones; cells with fewer than two finite estimates get NaN.
    """
    values = np.asarray(values, dtype=np.float64)
    finite = np.isfinite(values)
    n      = finite.sum(axis=0)
    with np.errstate(divide='ignore', invalid='ignore'):
        mean = np.where(finite, values, 0.0).sum(axis=0) / n
        dev2 = np.where(finite, (values - mean)**2, 0.0).sum(axis=0)
        err  = np.sqrt((n - 1) / n * dev2)
    return np.where(n >= 2, err, np.nan)


def _means(acc_set):
    return {label: profile.mean() for label, profile in acc_set.items()}


def _with_jackknife(acc, func):
    """Evaluate func on the full sample and every subsample; attach <key>_err."""
    out = func(_means(acc.full))
    if acc.n_subsamples == 0:
        for key in list(out):
            out[f'{key}_err'] = np.full_like(out[key], np.nan)
        return out

    replicas = [func(_means(s)) for s in acc.subsamples]
    for key in list(out):
        out[f'{key}_err'] = jackknife_error([r[key] for r in replicas])
    return out


def _sqrt_pos(x):
    with np.errstate(invalid='ignore'):
        return np.where(x > 0, np.sqrt(np.where(x > 0, x, 0.0)), np.nan)


def _fourth_root_neg(c4):
    with np.errstate(invalid='ignore'):
        return np.where(c4 < 0, np.power(np.where(c4 < 0, -c4, 0.0), 0.25), np.nan)


def compute_reference_flow(results, pathway='reco', gap_channel=None,
                           full_channel='c22full', four_channel='c24'):
    """
    Integrated reference flow per centrality class.

        c2{2,|deta|} = <<2>>_gap                   v2{2,|deta|} = sqrt(c2{2})
        c2{4}        = <<4>> - 2 <<2>>^2           v2{4}        = (-c2{4})^(1/4)

    The four-particle cumulant uses the same-region <<2>> from
    ``full_channel``; it is skipped if either channel is missing.

    Parameters
    ----------
    results      : dict — output of merge_files() / load_hdf5()
    pathway      : 'reco' or 'gen'
    gap_channel  : str — eta-gap two-particle channel (default c22 / c22MC)

    Returns
    -------
    dict with cent_bins, cent_cents, n_events and c22, v22, [c24, v24] plus *_err
    """
    acc      = results['accumulators'][pathway]
    channels = results['channels'][pathway]
    if gap_channel is None:
        gap_channel = 'c22' if pathway == 'reco' else 'c22MC'
    has_four = four_channel in channels and full_channel in channels

    def func(m):
        c22 = m[gap_channel][:, 0, 0]
        out = {'c22': c22, 'v22': _sqrt_pos(c22)}
        if has_four:
            c24 = m[four_channel][:, 0, 0] - 2.0 * m[full_channel][:, 0, 0]**2
            out['c24'] = c24
            out['v24'] = _fourth_root_neg(c24)
        return out

    flow = _with_jackknife(acc, func)

    cent_bins = results['cent_bins']
    flow['cent_bins']  = cent_bins
    flow['cent_cents'] = 0.5 * (cent_bins[:-1] + cent_bins[1:])
    flow['n_events']   = results['n_events'][pathway]

    print(f"Reference flow ({pathway}, {gap_channel}):")
    for ic in range(len(cent_bins) - 1):
        line = (f"  {cent_bins[ic]:3.0f}-{cent_bins[ic+1]:3.0f}%  "
                f"n_ev={flow['n_events'][ic]:6d}  "
                f"v2{{2}}={flow['v22'][ic]:.4f} +- {flow['v22_err'][ic]:.4f}")
        if has_four:
            line += f"  v2{{4}}={flow['v24'][ic]:.4f} +- {flow['v24_err'][ic]:.4f}"
        print(line)
    return flow


def compute_differential_flow(results, channel, pathway='reco', ref_channel=None):
    """
    pT- (and mass-) differential flow with the scalar-product normalisation:

        v2{2}(pT, m) = <<2'>>(pT, m) / sqrt(<<2>>)

    Returns
    -------
    dict with d22, v2 (shape (n_cent, n_pt, n_mass)) plus *_err, n_pt, n_mass
    """
    acc = results['accumulators'][pathway]
    if ref_channel is None:
        ref_channel = 'c22' if pathway == 'reco' else 'c22MC'
    n_pt, n_mass = results['channels'][pathway][channel]

    def func(m):
        d22 = m[channel]
        ref = _sqrt_pos(m[ref_channel][:, 0, 0])[:, None, None]
        with np.errstate(divide='ignore', invalid='ignore'):
            v2 = d22 / ref
        return {'d22': d22, 'v2': v2}

    flow = _with_jackknife(acc, func)
    flow['channel'] = channel
    flow['n_pt']    = n_pt
    flow['n_mass']  = n_mass
    n_ok = np.count_nonzero(np.isfinite(flow['v2']))
    print(f"Differential flow {channel} ({pathway}): {n_ok} / {flow['v2'].size} cells defined")
    return flow


def compute_differential_flow_4(results, pathway='reco', channel='c24dpt',
                                two_channel='c22fulldpt', ref_two='c22full', ref_four='c24'):
    """
    Four-particle differential flow:

        d2{4}(pT)  = <<4'>> - 2 <<2'>> <<2>>
        v2{4}(pT)  = -d2{4} / (-c2{4})^(3/4)
    """
    acc = results['accumulators'][pathway]
    n_pt, n_mass = results['channels'][pathway][channel]

    def func(m):
        c22 = m[ref_two][:, 0, 0]
        c24 = m[ref_four][:, 0, 0] - 2.0 * c22**2
        d24 = m[channel] - 2.0 * m[two_channel] * c22[:, None, None]
        with np.errstate(invalid='ignore', divide='ignore'):
            norm = np.where(c24 < 0, np.power(np.where(c24 < 0, -c24, 0.0), 0.75), np.nan)
            v24  = -d24 / norm[:, None, None]
        return {'d24': d24, 'v24': v24}

    flow = _with_jackknife(acc, func)
    flow['channel'] = channel
    flow['n_pt']    = n_pt
    flow['n_mass']  = n_mass
    return flow
