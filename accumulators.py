import numpy as np


class Profile:
    """
    Weighted running mean over (centrality, kinematic, mass) cells.

    Each sample y enters with weight w (the correlator denominator), so the
    cell mean is sum(w*y) / sum(w) and low-multiplicity events count less.
    Cells are plain sums, so merging two profiles is addition.
    """

    FIELDS = ('sum_w', 'sum_wy', 'sum_wy2', 'sum_w2', 'entries')

    def __init__(self, name, n_cent, n_kin=1, n_mass=1):
        self.name    = name
        self.shape   = (int(n_cent), int(n_kin), int(n_mass))
        self.sum_w   = np.zeros(self.shape, dtype=np.float64)
        self.sum_wy  = np.zeros(self.shape, dtype=np.float64)
        self.sum_wy2 = np.zeros(self.shape, dtype=np.float64)
        self.sum_w2  = np.zeros(self.shape, dtype=np.float64)
        self.entries = np.zeros(self.shape, dtype=np.int64)

    def fill(self, icent, ikin, imass, value, weight):
        """Add samples; indices and values may be scalars or equal-length arrays."""
        idx    = (icent, ikin, imass)
        value  = np.asarray(value, dtype=np.float64)
        weight = np.asarray(weight, dtype=np.float64)
        np.add.at(self.sum_w,   idx, weight)
        np.add.at(self.sum_wy,  idx, weight * value)
        np.add.at(self.sum_wy2, idx, weight * value**2)
        np.add.at(self.sum_w2,  idx, weight**2)
        np.add.at(self.entries, idx, 1)

    def mean(self):
        with np.errstate(divide='ignore', invalid='ignore'):
            return np.where(self.sum_w != 0, self.sum_wy / self.sum_w, np.nan)

    def error(self):
        """Standard error of the weighted mean (weighted variance over effective entries)."""
        mean = self.mean()
        with np.errstate(divide='ignore', invalid='ignore'):
            var   = np.clip(self.sum_wy2 / self.sum_w - mean**2, 0.0, None)
            n_eff = self.sum_w**2 / self.sum_w2
            err   = np.sqrt(var / n_eff)
        return np.where(self.sum_w != 0, err, np.nan)

    def merge(self, other):
        if other.shape != self.shape:
            raise ValueError(
                f"Cannot merge profile '{other.name}' {other.shape} "
                f"into '{self.name}' {self.shape}.")
        for field in self.FIELDS:
            getattr(self, field).__iadd__(getattr(other, field))
        return self

    __iadd__ = merge

    def copy(self):
        out = Profile(self.name, *self.shape)
        out.merge(self)
        return out

    def arrays(self):
        return {field: getattr(self, field) for field in self.FIELDS}

    @classmethod
    def from_arrays(cls, name, arrays):
        shape = arrays['sum_w'].shape
        out   = cls(name, *shape)
        for field in cls.FIELDS:
            getattr(out, field)[...] = arrays[field]
        return out

    def __repr__(self):
        return f"Profile({self.name!r}, shape={self.shape}, entries={int(self.entries.sum())})"


class AccumulatorSet:
    """One profile per output channel, looked up by channel label."""

    def __init__(self, channels, n_cent):
        self.profiles = {
            label: Profile(label, n_cent, n_kin, n_mass)
            for label, (n_kin, n_mass) in channels.items()
        }

    def push(self, label, centrality_bin, kinematic_bin, mass_bin, value, denominator):
        self.profiles[label].fill(centrality_bin, kinematic_bin, mass_bin,
                                  value, denominator)

    def merge(self, other):
        if set(other.profiles) != set(self.profiles):
            raise ValueError("Cannot merge accumulator sets with different channels.")
        for label, profile in self.profiles.items():
            profile.merge(other.profiles[label])
        return self

    def __getitem__(self, label):
        return self.profiles[label]

    def __iter__(self):
        return iter(self.profiles)

    def items(self):
        return self.profiles.items()


class FlowAccumulators:
    """
    Full-sample profiles plus jackknife replicas for one pathway.

    At the start of every event one subsample index j in [1, n_subsamples]
    is drawn uniformly; the event then fills the full set and every
    subsample except j. Each replica therefore misses a disjoint ~1/n slice
    of the events.
    """

    def __init__(self, channels, n_cent, n_subsamples=10, jackknife=True, seed=None):
        self.channels   = dict(channels)
        self.n_cent     = int(n_cent)
        self.full       = AccumulatorSet(self.channels, self.n_cent)
        n_sub           = int(n_subsamples) if jackknife else 0
        self.subsamples = [AccumulatorSet(self.channels, self.n_cent) for _ in range(n_sub)]
        self.rng        = np.random.default_rng(seed)
        self.excluded   = 0
        self.event_open = False
        self.n_events   = 0
        self.subsample_events = np.zeros(n_sub, dtype=np.int64)

    @property
    def n_subsamples(self):
        return len(self.subsamples)

    def draw(self):
        """Subsample index in [1, n_subsamples] from this set's generator (0 if jackknife is off)."""
        if not self.subsamples:
            return 0
        return int(self.rng.integers(1, self.n_subsamples + 1))

    def start_event(self, excluded=None):
        """
        Open an event and fix the subsample it is left out of.

        ``excluded`` lets several pathways of one physical event share a
        draw; by default the index comes from ``draw()``.
        """
        if excluded is None:
            excluded = self.draw()
        elif self.subsamples and not 1 <= excluded <= self.n_subsamples:
            raise ValueError(
                f"Subsample {excluded} outside [1, {self.n_subsamples}].")

        self.n_events  += 1
        self.event_open = True
        self.excluded   = int(excluded) if self.subsamples else 0
        if self.subsamples:
            self.subsample_events += 1
            self.subsample_events[self.excluded - 1] -= 1
        return self.excluded

    def push(self, label, centrality_bin, kinematic_bin, mass_bin, value, denominator):
        if not self.event_open:
            raise RuntimeError("push() before start_event(): no subsample drawn for this event.")
        self.full.push(label, centrality_bin, kinematic_bin, mass_bin, value, denominator)
        for j, subsample in enumerate(self.subsamples, start=1):
            if j == self.excluded:
                continue
            subsample.push(label, centrality_bin, kinematic_bin, mass_bin, value, denominator)

    def merge(self, other):
        if other.n_subsamples != self.n_subsamples:
            raise ValueError(
                f"Cannot merge {other.n_subsamples} subsamples into {self.n_subsamples}.")
        self.full.merge(other.full)
        for mine, theirs in zip(self.subsamples, other.subsamples):
            mine.merge(theirs)
        self.n_events         += other.n_events
        self.subsample_events += other.subsample_events
        return self
