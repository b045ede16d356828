import numpy as np
# Kinematic helpers shared by the particle stream builders and the toy model.

TWO_PI = 2.0 * np.pi


def get_kinematics(px, py, pz):
    """
    pT, azimuth and pseudorapidity from momentum components.

    The azimuth is returned in [0, 2pi). Particles travelling exactly along
    the beam axis get eta = NaN and are dropped by any acceptance cut.
    """
    px, py, pz = np.asarray(px), np.asarray(py), np.asarray(pz)

    pt  = np.sqrt(px**2 + py**2)
    pv  = np.sqrt(px**2 + py**2 + pz**2)
    phi = constrain_angle(np.arctan2(py, px), 0.0)

    with np.errstate(divide='ignore', invalid='ignore'):
        safe = np.where(pv - pz > 0, (pv + pz) / (pv - pz), np.inf)
        eta  = np.where(np.isfinite(safe) & (safe > 0), 0.5 * np.log(safe), np.nan)

    return pt, phi, eta


def constrain_angle(phi, low=0.0):
    """Map phi into [low, low + 2pi)."""
    return np.mod(np.asarray(phi) - low, TWO_PI) + low


def find_bin(edges, values):
    """
    Index of the half-open bin [edges[i], edges[i+1]) holding each value.

    Returns -1 for values outside the axis (and for NaN). Scalars in,
    scalar out; arrays in, int array out.
    """
    edges  = np.asarray(edges)
    values = np.asarray(values, dtype=np.float64)

    idx = np.searchsorted(edges, values, side='right') - 1
    out = (idx < 0) | (idx >= len(edges) - 1) | ~np.isfinite(values)
    idx = np.where(out, -1, idx)

    if idx.ndim == 0:
        return int(idx)
    return idx.astype(np.int64)


def pt_mass_bin(ipt, imass, n_pt):
    """
    Combined kinematic index of a (pT, mass) cell: ipt + imass * n_pt.

    -1 if either index is out of range.
    """
    ipt   = np.asarray(ipt)
    imass = np.asarray(imass)
    idx   = np.where((ipt < 0) | (imass < 0), -1, ipt + imass * n_pt)
    if idx.ndim == 0:
        return int(idx)
    return idx.astype(np.int64)


def split_pt_mass_bin(index, n_pt):
    """Inverse of pt_mass_bin: (ipt, imass)."""
    return np.mod(index, n_pt), np.floor_divide(index, n_pt)
