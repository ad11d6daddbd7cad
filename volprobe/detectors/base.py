"""
Detector contract — ``identify`` then ``extract``, both total.

Subclasses implement ``_identify`` and ``_extract`` and are free to
raise ``ProbeError`` subclasses from anywhere inside them (the accessor
helpers and the decoder already do).  The public methods are the
boundary: nothing raised below them reaches the caller.

Detectors hold configuration only (ids, names, default encodings,
layouts).  Everything learned about a particular partition lives in
locals of one call and in the ``DescriptorDraft`` / ``Report`` created
for that call, so one detector instance can serve concurrent probes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from ..accessor import SectorAccessor, Partition, read_bytes
from ..descriptor import VolumeDescriptor, DescriptorDraft, Report
from ..errors import ProbeError, ChecksumMismatch, MalformedStructure
from ..structs import Layout, LITTLE, decode

logger = logging.getLogger(__name__)


class Detector:
    """Base class for one on-disk format."""
    format_id = ""          # Registry key, e.g. "hfs"
    name = ""               # Human-readable, e.g. "Apple Hierarchical File System"
    type_tag = ""           # Descriptor type used when extraction stops early
    encoding = "ascii"      # Default text encoding for names and labels

    def identify(self, accessor: SectorAccessor, partition: Partition) -> bool:
        try:
            matched = bool(self._identify(accessor, partition))
        except ProbeError as e:
            logger.debug("%s: no match (%s: %s)", self.format_id, type(e).__name__, e)
            return False
        except Exception as e:
            logger.error("%s identify error: %s", self.format_id, e, exc_info=True)
            return False
        if matched:
            logger.debug("%s: match on LBA %d..%d", self.format_id, partition.start, partition.end)
        return matched

    def extract(
        self,
        accessor: SectorAccessor,
        partition: Partition,
        encoding: Optional[str] = None,
    ) -> tuple[VolumeDescriptor, str]:
        draft = DescriptorDraft(type=self.type_tag or self.format_id)
        report = Report(self.name)
        try:
            self._extract(accessor, partition, draft, report, encoding or self.encoding)
        except ProbeError as e:
            report.warn(f"extraction stopped early ({type(e).__name__}: {e})")
        except Exception as e:
            logger.error("%s extract error: %s", self.format_id, e, exc_info=True)
            report.warn(f"extraction failed ({type(e).__name__}: {e})")

        descriptor = draft.freeze()
        logger.info("%s: %s", self.format_id, descriptor.summary)
        return descriptor, report.text

    def _identify(self, accessor: SectorAccessor, partition: Partition) -> bool:
        raise NotImplementedError

    def _extract(self, accessor: SectorAccessor, partition: Partition,
                 draft: DescriptorDraft, report: Report, encoding: str):
        raise NotImplementedError

    def __repr__(self):
        return f"<{type(self).__name__} {self.format_id}>"


@dataclass(frozen=True)
class Media:
    """What a layout mapper may know about where the record came from."""
    sector_size: int
    partition_bytes: int
    image_bytes: int


def require_checksum(what: str, stored: int, computed: int):
    if stored != computed:
        raise ChecksumMismatch(what, stored, computed)


class LayoutDetector(Detector):
    """
    A detector described entirely by data.

    Args:
        format_id, name, type_tag, encoding:  as on ``Detector``.
        layout:       structure layout to decode.
        byte_offset:  partition-relative byte offset of the structure.
        magic:        predicate on the decoded record; picks the byte order.
        orders:       byte orders to try, in order.
        sanity:       optional predicate on header fields, checked before
                      the magic for every candidate byte order.
        checksum:     optional ``(raw, record) -> (stored, computed)``.
        extent:       optional ``record -> declared volume bytes``; must
                      not exceed the partition.
        mapper:       ``(record, draft, report, encoding, media)`` fills
                      the descriptor.
    """

    def __init__(
        self,
        format_id: str,
        name: str,
        layout: Layout,
        byte_offset: int,
        magic: Callable[[tuple], bool],
        mapper: Callable,
        orders: tuple[str, ...] = (LITTLE,),
        sanity: Optional[Callable[[tuple], bool]] = None,
        checksum: Optional[Callable[[bytes, tuple], tuple[int, int]]] = None,
        extent: Optional[Callable[[tuple], int]] = None,
        type_tag: str = "",
        encoding: str = "ascii",
    ):
        self.format_id = format_id
        self.name = name
        self.type_tag = type_tag
        self.encoding = encoding
        self.layout = layout
        self.byte_offset = byte_offset
        self.orders = tuple(orders)
        self._magic = magic
        self._sanity = sanity
        self._checksum = checksum
        self._extent = extent
        self._mapper = mapper

    def _read(self, accessor: SectorAccessor, partition: Partition):
        raw = read_bytes(accessor, partition, self.byte_offset, self.layout.size)
        for order in self.orders:
            record = decode(raw, self.layout, order)
            if self._sanity is not None and not self._sanity(record):
                continue
            if self._magic(record):
                return raw, record
        return raw, None

    def _identify(self, accessor: SectorAccessor, partition: Partition) -> bool:
        raw, record = self._read(accessor, partition)
        if record is None:
            return False
        if self._checksum is not None:
            require_checksum(self.layout.name, *self._checksum(raw, record))
        if self._extent is not None:
            declared = self._extent(record)
            available = partition.size(accessor.sector_size)
            if declared > available:
                raise MalformedStructure(
                    f"declares {declared} bytes, partition holds {available}")
        return True

    def _extract(self, accessor, partition, draft, report, encoding):
        raw, record = self._read(accessor, partition)
        if record is None:
            raise MalformedStructure(f"{self.layout.name} no longer validates")
        media = Media(accessor.sector_size, partition.size(accessor.sector_size), accessor.size)
        self._mapper(record, draft, report, encoding, media)
