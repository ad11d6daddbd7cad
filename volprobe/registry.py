"""
Detector Registry — ordered dispatch of every known format over one partition.

FLOW
────
1. ``try_identify`` runs each detector's ``identify`` in registry order.
   By default every detector is tried: two claims on the same partition
   mean a detector is missing a negative match, and that is reported as
   ``AmbiguousMatch`` instead of letting list order pick a winner.
   ``ProbeConfig(stop_at_first=True)`` returns on the first claim.
2. ``extract`` runs the winning detector's ``extract``.
3. ``probe`` does both and folds the outcome into a ``ProbeResult``.

The detector tuple is fixed at construction; nothing mutates it while
probing, so one registry serves any number of threads.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from .accessor import SectorAccessor, Partition
from .config import ProbeConfig, DEFAULT_CONFIG
from .descriptor import VolumeDescriptor
from .errors import AmbiguousMatch
from .detectors import (
    Detector, AmigaDetector, AcornDetector, HfsPlusDetector, HfsDetector,
    ProdosDetector, ext2_detector, SysvDetector, UfsDetector,
    Iso9660Detector, FatDetector,
)

logger = logging.getLogger(__name__)


class ProbeState:
    """Where one partition's probe ended up."""
    NOT_TRIED = "not_tried"
    NO_MATCH = "no_match"
    MATCHED = "matched"
    EXTRACTED = "extracted"
    AMBIGUOUS = "ambiguous"


@dataclass(frozen=True)
class ProbeResult:
    state: str
    format_id: Optional[str] = None
    candidates: tuple[str, ...] = ()
    descriptor: Optional[VolumeDescriptor] = None
    report: str = ""

    @property
    def matched(self) -> bool:
        return self.state == ProbeState.EXTRACTED


class Registry:
    """Immutable, ordered collection of detectors."""

    def __init__(self, detectors):
        self._detectors = tuple(detectors)
        ids = [d.format_id for d in self._detectors]
        dupes = sorted({i for i in ids if ids.count(i) > 1})
        if dupes:
            raise ValueError(f"duplicate format ids: {', '.join(dupes)}")
        self._by_id = {d.format_id: d for d in self._detectors}

    @property
    def detectors(self) -> tuple[Detector, ...]:
        return self._detectors

    @property
    def formats(self) -> tuple[str, ...]:
        return tuple(d.format_id for d in self._detectors)

    def get(self, format_id: str) -> Detector:
        try:
            return self._by_id[format_id]
        except KeyError:
            raise KeyError(f"unknown format {format_id!r} "
                           f"(known: {', '.join(self.formats)})") from None

    def __len__(self):
        return len(self._detectors)

    def __iter__(self):
        return iter(self._detectors)

    def claims(self, accessor: SectorAccessor, partition: Partition,
               config: ProbeConfig = DEFAULT_CONFIG) -> list[str]:
        """Format ids whose detector identifies the partition, in registry order."""
        claimed = []
        for detector in self._detectors:
            if not config.wants(detector.format_id):
                continue
            if detector.identify(accessor, partition):
                claimed.append(detector.format_id)
                if config.stop_at_first:
                    break
        return claimed

    def try_identify(self, accessor: SectorAccessor, partition: Partition,
                     config: ProbeConfig = DEFAULT_CONFIG) -> Optional[str]:
        """
        The single format claiming the partition, or None.

        Raises AmbiguousMatch when more than one detector claims it.
        """
        claimed = self.claims(accessor, partition, config)
        if len(claimed) > 1:
            logger.warning("LBA %d..%d claimed by %d detectors: %s",
                           partition.start, partition.end, len(claimed), ", ".join(claimed))
            raise AmbiguousMatch(claimed)
        return claimed[0] if claimed else None

    def extract(self, accessor: SectorAccessor, partition: Partition, format_id: str,
                config: ProbeConfig = DEFAULT_CONFIG) -> tuple[VolumeDescriptor, str]:
        return self.get(format_id).extract(accessor, partition, config.encoding)

    def probe(self, accessor: SectorAccessor, partition: Partition,
              config: ProbeConfig = DEFAULT_CONFIG, extract: bool = True) -> ProbeResult:
        """Identify, then (unless told not to) extract; never raises for on-disk content."""
        if not any(config.wants(f) for f in self.formats):
            return ProbeResult(ProbeState.NOT_TRIED)
        try:
            format_id = self.try_identify(accessor, partition, config)
        except AmbiguousMatch as e:
            return ProbeResult(ProbeState.AMBIGUOUS, candidates=e.candidates, report=str(e))

        if format_id is None:
            logger.info("LBA %d..%d: no known filesystem", partition.start, partition.end)
            return ProbeResult(ProbeState.NO_MATCH)

        if not extract:
            return ProbeResult(ProbeState.MATCHED, format_id, (format_id,))

        descriptor, report = self.extract(accessor, partition, format_id, config)
        return ProbeResult(ProbeState.EXTRACTED, format_id, (format_id,), descriptor, report)


# Identify order: specific formats before the generic ones that can
# wrap them (HFS+ before HFS, everything before FAT).
def _build() -> Registry:
    return Registry([
        AmigaDetector(),
        AcornDetector(),
        HfsPlusDetector(),
        HfsDetector(),
        ProdosDetector(),
        ext2_detector(),
        SysvDetector(),
        UfsDetector(),
        Iso9660Detector(),
        FatDetector(),
    ])


_default: Optional[Registry] = None
_default_lock = threading.Lock()


def default_registry() -> Registry:
    """The process-wide registry, built on first use."""
    global _default
    with _default_lock:
        if _default is None:
            _default = _build()
            logger.debug("Registry built: %s", ", ".join(_default.formats))
        return _default
