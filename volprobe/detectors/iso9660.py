"""
ISO 9660 detector (with High Sierra and CD-i variants).

Volume descriptors start at sector 16 of the partition and run until a
terminator (type 255).  Along the way we pick up the primary descriptor,
a Joliet supplementary descriptor if one is present, and an El Torito
boot record.

Raw optical sectors carry a header in front of the 2048 bytes of user
data: 8 bytes of subheader on 2336-byte Mode 2 sectors, 16 (Mode 1) or
24 (Mode 2 Form 1) bytes of sync + header on 2352/2448-byte sectors.
"""

import logging
from typing import Optional

from ..accessor import read_checked
from ..dates import iso9660_to_datetime
from ..errors import MalformedStructure
from ..structs import Layout, Field, LITTLE, BIG, decode, text
from .base import Detector

logger = logging.getLogger(__name__)

FIRST_DESCRIPTOR = 16
MAX_DESCRIPTORS = 64

ISO_MAGIC = b"CD001"
HIGH_SIERRA_MAGIC = b"CDROM"
CDI_MAGIC = b"CD-I "
EL_TORITO = b"EL TORITO SPECIFICATION"

VD_BOOT = 0
VD_PRIMARY = 1
VD_SUPPLEMENTARY = 2
VD_PARTITION = 3
VD_TERMINATOR = 255

JOLIET_ESCAPES = (b"%/@", b"%/C", b"%/E")

PRIMARY = Layout("PrimaryVolumeDescriptor", [
    Field("type", 0, "u8"),
    Field("magic", 1, "raw", length=5),
    Field("version", 6, "u8"),
    Field("system_id", 8, "raw", length=32),
    Field("volume_id", 40, "raw", length=32),
    Field("space_size", 80, "u32"),
    Field("escape_sequences", 88, "raw", length=32),
    Field("set_size", 120, "u16"),
    Field("sequence_number", 124, "u16"),
    Field("block_size", 128, "u16"),
    Field("path_table_size", 132, "u32"),
    Field("root_extent", 158, "u32"),
    Field("root_size", 166, "u32"),
    Field("volume_set_id", 190, "raw", length=128),
    Field("publisher_id", 318, "raw", length=128),
    Field("preparer_id", 446, "raw", length=128),
    Field("application_id", 574, "raw", length=128),
    Field("creation", 813, "raw", length=17),
    Field("modification", 830, "raw", length=17),
    Field("expiration", 847, "raw", length=17),
    Field("effective", 864, "raw", length=17),
    Field("structure_version", 881, "u8"),
])

HIGH_SIERRA = Layout("HighSierraPrimaryVolumeDescriptor", [
    Field("volume_lbn", 0, "u32"),
    Field("type", 8, "u8"),
    Field("magic", 9, "raw", length=5),
    Field("version", 14, "u8"),
    Field("system_id", 16, "raw", length=32),
    Field("volume_id", 48, "raw", length=32),
    Field("space_size", 88, "u32"),
    Field("set_size", 128, "u16"),
    Field("sequence_number", 132, "u16"),
    Field("block_size", 136, "u16"),
    Field("path_table_size", 140, "u32"),
    Field("volume_set_id", 214, "raw", length=128),
    Field("publisher_id", 342, "raw", length=128),
    Field("preparer_id", 470, "raw", length=128),
    Field("application_id", 598, "raw", length=128),
    Field("creation", 790, "raw", length=16),
    Field("modification", 806, "raw", length=16),
    Field("expiration", 822, "raw", length=16),
    Field("effective", 838, "raw", length=16),
])

# CD-i File Structure Volume Descriptor, big-endian throughout
CDI = Layout("FileStructureVolumeDescriptor", [
    Field("type", 0, "u8"),
    Field("magic", 1, "raw", length=5),
    Field("version", 6, "u8"),
    Field("system_id", 8, "raw", length=32),
    Field("volume_id", 40, "raw", length=32),
    Field("space_size", 84, "u32"),
    Field("set_size", 122, "u16"),
    Field("sequence_number", 126, "u16"),
    Field("block_size", 130, "u16"),
    Field("path_table_size", 136, "u32"),
    Field("volume_set_id", 190, "raw", length=128),
    Field("publisher_id", 318, "raw", length=128),
    Field("preparer_id", 446, "raw", length=128),
    Field("application_id", 574, "raw", length=128),
    Field("creation", 813, "raw", length=17),
    Field("modification", 830, "raw", length=17),
    Field("expiration", 847, "raw", length=17),
    Field("effective", 864, "raw", length=17),
])

BOOT_RECORD = Layout("BootRecord", [
    Field("type", 0, "u8"),
    Field("magic", 1, "raw", length=5),
    Field("version", 6, "u8"),
    Field("system_id", 7, "raw", length=32),
    Field("boot_id", 39, "raw", length=32),
    Field("catalog_sector", 0x47, "u32"),
])


def user_data_offsets(sector_size: int) -> tuple[int, ...]:
    """Where the 2048 bytes of user data may begin inside one sector."""
    if sector_size == 2336:
        return (8,)
    if sector_size in (2352, 2448):
        return (16, 24)
    return (0,)


def _flavour(vd: bytes) -> Optional[str]:
    if vd[1:6] == ISO_MAGIC:
        return "iso"
    if vd[9:14] == HIGH_SIERRA_MAGIC:
        return "high_sierra"
    if vd[1:6] == CDI_MAGIC:
        return "cdi"
    return None


def _ident(raw: bytes, encoding: str) -> str:
    return text(raw, encoding).rstrip(" ")


def _ucs2(raw: bytes) -> str:
    return raw.decode("utf-16-be", errors="replace").rstrip("\x00 ")


class Iso9660Detector(Detector):
    format_id = "iso9660"
    name = "ISO9660 Filesystem"
    type_tag = "ISO9660"
    encoding = "ascii"

    def _first_descriptor(self, accessor, partition) -> Optional[tuple[int, bytes, str]]:
        """(user-data offset, descriptor bytes, flavour) at sector 16, or None."""
        sector = read_checked(accessor, partition, FIRST_DESCRIPTOR, 1)
        for off in user_data_offsets(accessor.sector_size):
            vd = bytes(sector[off:off + 2048])
            if len(vd) < 2048:
                continue
            flavour = _flavour(vd)
            if flavour and vd[0] != VD_TERMINATOR:
                return off, vd, flavour
        return None

    def _identify(self, accessor, partition) -> bool:
        if accessor.sector_size < 2048:
            return False
        if partition.end <= FIRST_DESCRIPTOR + partition.start:
            return False
        return self._first_descriptor(accessor, partition) is not None

    def _descriptors(self, accessor, partition, off: int, type_at: int):
        """Yield (type, bytes) for each volume descriptor up to the terminator."""
        for n in range(MAX_DESCRIPTORS):
            lba = FIRST_DESCRIPTOR + n
            if partition.start + lba > partition.end:
                return
            sector = read_checked(accessor, partition, lba, 1)
            vd = bytes(sector[off:off + 2048])
            vd_type = vd[type_at]
            if vd_type == VD_TERMINATOR or _flavour(vd) is None:
                return
            yield vd_type, vd

    def _extract(self, accessor, partition, draft, report, encoding):
        first = self._first_descriptor(accessor, partition)
        if first is None:
            raise MalformedStructure("volume descriptor set no longer found")
        off, _, flavour = first
        high_sierra = flavour == "high_sierra"
        cdi = False

        primary = joliet = boot = None
        enhanced = partition_vd = False
        for vd_type, vd in self._descriptors(accessor, partition, off, 8 if high_sierra else 0):
            cdi |= vd[1:6] == CDI_MAGIC
            if vd_type == VD_BOOT:
                boot = decode(vd, BOOT_RECORD, LITTLE, 8 if high_sierra else 0)
            elif vd_type == VD_PRIMARY:
                if high_sierra:
                    primary = decode(vd, HIGH_SIERRA, LITTLE)
                elif cdi:
                    primary = decode(vd, CDI, BIG)
                else:
                    primary = decode(vd, PRIMARY, LITTLE)
            elif vd_type == VD_SUPPLEMENTARY:
                svd = decode(vd, PRIMARY, LITTLE)
                if svd.version == 1:
                    if svd.escape_sequences[:3] in JOLIET_ESCAPES:
                        joliet = svd
                    else:
                        logger.debug("Unknown supplementary volume descriptor")
                else:
                    enhanced = True
            elif vd_type == VD_PARTITION:
                partition_vd = True

        if primary is None:
            raise MalformedStructure("no primary volume descriptor")

        if high_sierra:
            draft.type = "High Sierra Format"
        elif cdi:
            draft.type = "CD-i"
        else:
            draft.type = "ISO9660"
        report.add(f"{draft.type} filesystem")

        draft.cluster_size = primary.block_size
        draft.clusters = primary.space_size
        draft.system_identifier = _ident(primary.system_id, encoding)
        draft.volume_name = _ident(primary.volume_id, encoding)
        if joliet is not None:
            joliet_name = _ucs2(joliet.volume_id)
            if len(joliet_name) > len(draft.volume_name):
                draft.volume_name = joliet_name
        draft.creation_date = iso9660_to_datetime(primary.creation)
        draft.modification_date = iso9660_to_datetime(primary.modification)
        draft.expiration_date = iso9660_to_datetime(primary.expiration)
        draft.effective_date = iso9660_to_datetime(primary.effective)

        if boot is not None:
            draft.bootable = True
            spec = "El Torito" if boot.system_id[:len(EL_TORITO)] == EL_TORITO else "Unknown"
            report.add(f"Disc bootable following {spec} specifications.")
            if spec == "El Torito":
                report.add(f"Boot catalog at sector {boot.catalog_sector}")
        else:
            report.add("Disc is not bootable")

        if off:
            report.add(f"User data starts at byte {off} of each {accessor.sector_size}-byte sector")
        if joliet is not None:
            report.add("Joliet extensions present.")
        if enhanced:
            report.add("Enhanced volume descriptor present.")
        if partition_vd:
            report.add("Volume partition descriptor present.")

        report.add("VOLUME DESCRIPTOR INFORMATION:")
        report.add(f"System identifier: {draft.system_identifier}")
        report.add(f"Volume identifier: {_ident(primary.volume_id, encoding)}")
        report.add(f"Volume set identifier: {_ident(primary.volume_set_id, encoding)}")
        report.add(f"Publisher identifier: {_ident(primary.publisher_id, encoding)}")
        report.add(f"Data preparer identifier: {_ident(primary.preparer_id, encoding)}")
        report.add(f"Application identifier: {_ident(primary.application_id, encoding)}")
        report.add(f"Volume {primary.sequence_number} of {primary.set_size} in set")
        report.add(f"{primary.space_size} logical blocks of {primary.block_size} bytes "
                   f"({primary.space_size * primary.block_size} bytes)")
        for label, when in (("created", draft.creation_date),
                            ("last modified", draft.modification_date),
                            ("expires", draft.expiration_date),
                            ("effective from", draft.effective_date)):
            report.add(f"Volume {label} on {when}" if when else f"Volume {label} date not specified")

        if joliet is not None:
            report.add("JOLIET VOLUME DESCRIPTOR INFORMATION:")
            report.add(f"System identifier: {_ucs2(joliet.system_id)}")
            report.add(f"Volume identifier: {_ucs2(joliet.volume_id)}")
            report.add(f"Volume set identifier: {_ucs2(joliet.volume_set_id)}")
            report.add(f"Publisher identifier: {_ucs2(joliet.publisher_id)}")
            report.add(f"Data preparer identifier: {_ucs2(joliet.preparer_id)}")
            report.add(f"Application identifier: {_ucs2(joliet.application_id)}")
