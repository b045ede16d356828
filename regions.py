import logging
from typing import Dict, Iterator

log = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Inconsistent region table or correlator catalog. Fatal at start-up."""


class Region:
    """
    A named pseudorapidity window with its own kinematic sub-bins.

    A particle contributes to the region when its membership tag shares a
    bit with ``tag`` and ``eta_min < eta < eta_max``.
    """

    __slots__ = ('name', 'eta_min', 'eta_max', 'n_bins', 'tag')

    def __init__(self, name: str, eta_min: float, eta_max: float,
                 n_bins: int, tag: int):
        self.name    = name
        self.eta_min = float(eta_min)
        self.eta_max = float(eta_max)
        self.n_bins  = int(n_bins)
        self.tag     = int(tag)

    def accepts(self, eta):
        return (eta > self.eta_min) & (eta < self.eta_max)

    def overlaps(self, other: 'Region') -> bool:
        return other.eta_min < self.eta_max and self.eta_min < other.eta_max

    def __repr__(self):
        return (f"Region({self.name!r}, eta=({self.eta_min:.2f}, {self.eta_max:.2f}), "
                f"n_bins={self.n_bins}, tag={self.tag})")


class RegionRegistry:
    """
    Process-wide table of regions.

    Regions are declared once at initialisation; ``finalize()`` locks the
    table, after which it is read-only and may be shared freely.
    """

    def __init__(self):
        self.regions: Dict[str, Region] = {}
        self.finalized = False

    def declare(self, name, eta_min, eta_max, n_bins, tag):
        if self.finalized:
            raise ConfigurationError(
                f"Cannot declare region '{name}': registry is finalized.")
        if name in self.regions:
            raise ConfigurationError(f"Region '{name}' declared twice.")
        if not eta_min < eta_max:
            raise ConfigurationError(
                f"Region '{name}': eta_min={eta_min} must be below eta_max={eta_max}.")
        if int(n_bins) < 1:
            raise ConfigurationError(
                f"Region '{name}': needs at least one kinematic bin, got {n_bins}.")
        if int(tag) <= 0:
            raise ConfigurationError(
                f"Region '{name}': membership tag must be a positive bit mask, got {tag}.")

        region = Region(name, eta_min, eta_max, n_bins, tag)
        self.regions[name] = region
        return region

    def finalize(self):
        self.finalized = True
        log.info("Region registry finalized with %d regions", len(self.regions))
        return self

    def __getitem__(self, name) -> Region:
        try:
            return self.regions[name]
        except KeyError:
            raise ConfigurationError(f"Region '{name}' is not declared.") from None

    def __contains__(self, name):
        return name in self.regions

    def __iter__(self) -> Iterator[Region]:
        return iter(self.regions.values())

    def __len__(self):
        return len(self.regions)
