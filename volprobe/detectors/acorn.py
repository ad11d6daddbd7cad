"""
Acorn ADFS detector.

Old-map discs (ADFS-S/M/L/D) keep a two-part free space map in the
first 512 bytes of the disc: map sector 0 at byte 0, map sector 1 at
byte 0x100 (or at physical sector 1 when the media's sectors are 256
bytes).  Each map half ends in an additive check byte, and the root
directory follows at 0x200 ("Hugo" directories) or 0x400 ("Nick").

New-map discs (ADFS-E/F/G and hard discs) carry a disc record in one
of two places:
  - inside zone 0 of the new map (partition sector 0, offset 4), when
    the zone check byte verifies;
  - otherwise in the boot block at byte 0xC00, offset 0x1C0, when the
    boot block check byte verifies.
Either way the record must then pass the field sanity checks below
before the partition is claimed.
"""

import logging

from ..accessor import read_checked, read_bytes
from ..checksums import acorn_boot_checksum, acorn_new_map_checksum, acorn_old_map_checksum
from ..errors import MalformedStructure, OutOfRange
from ..structs import Layout, Field, Split64, LITTLE, decode, text
from .base import Detector

logger = logging.getLogger(__name__)

BOOT_BLOCK_LOCATION = 0xC00
BOOT_BLOCK_SIZE = 0x200
BOOT_DISC_RECORD = 0x1C0
MAP_DISC_RECORD = 4

OLD_MAP_SIZE = 0x100
OLD_DIRECTORY_LOCATION = 0x200
NEW_DIRECTORY_LOCATION = 0x400
OLD_DIRECTORY_SIZE = 1280
NEW_DIRECTORY_SIZE = 2048
OLD_DIR_MAGIC = 0x6F677548      # "Hugo"
NEW_DIR_MAGIC = 0x6B63694E      # "Nick"

OLD_MAP_0 = Layout("AcornOldMapSector0", [
    Field("free_start", 0x00, "raw", length=82 * 3),
    Field("name", 0xF7, "raw", length=5),
    Field("size", 0xFC, "u8", count=3),
    Field("checksum", 0xFF, "u8"),
], size=OLD_MAP_SIZE)

OLD_MAP_1 = Layout("AcornOldMapSector1", [
    Field("free_length", 0x00, "raw", length=82 * 3),
    Field("name", 0xF6, "raw", length=5),
    Field("disc_id", 0xFB, "u16"),
    Field("boot", 0xFD, "u8"),
    Field("free_end", 0xFE, "u8"),
    Field("checksum", 0xFF, "u8"),
], size=OLD_MAP_SIZE)

# Header plus 47 entries of 26 bytes, then a 53-byte tail
OLD_DIRECTORY = Layout("AcornOldDirectory", [
    Field("header_magic", 1, "u32"),
    Field("name", 1228, "raw", length=10),
    Field("title", 1241, "raw", length=19),
    Field("tail_magic", 1275, "u32"),
    Field("check_byte", 1279, "u8"),
], size=OLD_DIRECTORY_SIZE)

# Header plus 77 entries, then a 41-byte tail
NEW_DIRECTORY = Layout("AcornNewDirectory", [
    Field("header_magic", 1, "u32"),
    Field("title", 2013, "raw", length=19),
    Field("name", 2032, "raw", length=10),
    Field("tail_magic", 2043, "u32"),
    Field("check_byte", 2047, "u8"),
], size=NEW_DIRECTORY_SIZE)

DISC_RECORD = Layout("AcornDiscRecord", [
    Field("log2secsize", 0, "u8"),
    Field("spt", 1, "u8"),
    Field("heads", 2, "u8"),
    Field("density", 3, "u8"),
    Field("idlen", 4, "u8"),
    Field("log2bpmb", 5, "u8"),
    Field("skew", 6, "u8"),
    Field("bootoption", 7, "u8"),
    Field("lowsector", 8, "u8"),
    Field("nzones", 9, "u8"),
    Field("zone_spare", 10, "u16"),
    Field("root", 12, "u32"),
    Field("disc_size", 16, "u32"),
    Field("disc_id", 20, "u16"),
    Field("disc_name", 22, "raw", length=10),
    Field("disc_type", 32, "u32"),
    Field("disc_size_high", 36, "u32"),
    Field("flags", 40, "u8"),
    Field("nzones_high", 41, "u8"),
    Field("format_version", 42, "u32"),
    Field("root_size", 46, "u32"),
    Field("reserved", 50, "raw", length=8),
], derived=[Split64("disc_bytes", "disc_size_high", "disc_size")])


def disc_record_sane(record) -> bool:
    """Field-range checks every genuine disc record passes."""
    if not 8 <= record.log2secsize <= 10:
        return False
    if record.idlen < record.log2secsize + 3 or record.idlen > 19:
        return False
    if record.disc_size_high >> record.log2secsize != 0:
        return False
    return not any(record.reserved)


def old_map_bytes(map0) -> int:
    """Disc size from the 24-bit count of 256-byte sectors in map sector 0."""
    lo, mid, hi = map0.size
    return ((hi << 16) + (mid << 8) + lo) * 256


def old_map_name(map0, map1) -> bytes:
    """Disc name, stored with even characters in map 0 and odd in map 1."""
    name = bytearray(10)
    name[0::2] = map0.name
    name[1::2] = map1.name
    return bytes(name)


def _c_string(raw: bytes) -> bytes:
    for end, b in enumerate(raw):
        if b in (0x00, 0x0D):
            return raw[:end]
    return raw


class AcornDetector(Detector):
    format_id = "adfs"
    name = "Acorn Advanced Disc Filing System"
    type_tag = "Acorn Advanced Disc Filing System"
    encoding = "ascii"

    # ── old map ─────────────────────────────────────────────

    def _old_map(self, accessor, partition):
        """(map0, map1) when both old-map halves verify, else None."""
        if partition.start != 0 or accessor.sector_size < 256:
            return None
        raw0 = read_bytes(accessor, partition, 0, OLD_MAP_SIZE)
        map0 = decode(raw0, OLD_MAP_0, LITTLE)
        chk0 = acorn_old_map_checksum(raw0)
        logger.debug("ADFS old map 0 check 0x%02X (stored 0x%02X)", chk0, map0.checksum)
        if map0.checksum == 0 or chk0 != map0.checksum:
            return None

        # Map 1 normally starts on sector 1; ADFS-D keeps it at 0x100
        for location in dict.fromkeys((accessor.sector_size, OLD_MAP_SIZE)):
            try:
                raw1 = read_bytes(accessor, partition, location, OLD_MAP_SIZE)
            except OutOfRange:
                continue
            map1 = decode(raw1, OLD_MAP_1, LITTLE)
            chk1 = acorn_old_map_checksum(raw1)
            logger.debug("ADFS old map 1 at 0x%X check 0x%02X (stored 0x%02X)",
                         location, chk1, map1.checksum)
            if map1.checksum != 0 and chk1 == map1.checksum:
                return map0, map1
        return None

    def _directory(self, accessor, partition, location, layout, magics):
        try:
            raw = read_bytes(accessor, partition, location, layout.size)
        except OutOfRange:
            return None
        directory = decode(raw, layout, LITTLE)
        if directory.header_magic != directory.tail_magic or directory.header_magic not in magics:
            return None
        return directory

    def _root_directory(self, accessor, partition):
        """Root directory of an old-map disc, or None."""
        for location in (OLD_DIRECTORY_LOCATION, NEW_DIRECTORY_LOCATION):
            found = self._directory(accessor, partition, location, OLD_DIRECTORY,
                                    (OLD_DIR_MAGIC, NEW_DIR_MAGIC))
            if found is not None:
                return found
        return self._directory(accessor, partition, NEW_DIRECTORY_LOCATION, NEW_DIRECTORY,
                               (NEW_DIR_MAGIC,))

    def _old_map_name(self, accessor, partition, map0, map1) -> bytes:
        name = _c_string(old_map_name(map0, map1))
        if any(name):
            return name
        # Unnamed map: fall back to the root directory
        for location in (OLD_DIRECTORY_LOCATION, NEW_DIRECTORY_LOCATION):
            found = self._directory(accessor, partition, location, OLD_DIRECTORY, (OLD_DIR_MAGIC,))
            if found is not None:
                return _c_string(found.name)
        found = self._directory(accessor, partition, NEW_DIRECTORY_LOCATION, NEW_DIRECTORY,
                                (NEW_DIR_MAGIC,))
        return _c_string(found.title) if found is not None else b""

    # ── new map ─────────────────────────────────────────────

    def _disc_record(self, accessor, partition):
        """Locate and decode the disc record; None when neither copy verifies."""
        if accessor.sector_size < 256:
            return None, ""

        map_sector = read_checked(accessor, partition, 0, 1)
        new_chk = acorn_new_map_checksum(map_sector)

        if BOOT_BLOCK_LOCATION + BOOT_BLOCK_SIZE > partition.size(accessor.sector_size):
            return None, ""
        boot = read_bytes(accessor, partition, BOOT_BLOCK_LOCATION, BOOT_BLOCK_SIZE)
        boot_chk = acorn_boot_checksum(boot)
        logger.debug("ADFS map check 0x%02X (stored 0x%02X), boot check 0x%X (stored 0x%02X)",
                     new_chk, map_sector[0], boot_chk, boot[0x1FF])

        if new_chk == map_sector[0] and new_chk != 0:
            return decode(map_sector, DISC_RECORD, LITTLE, MAP_DISC_RECORD), "new map"
        if boot_chk == boot[0x1FF]:
            return decode(boot, DISC_RECORD, LITTLE, BOOT_DISC_RECORD), "boot block"
        return None, ""

    def _identify(self, accessor, partition) -> bool:
        if partition.start >= partition.end:
            return False
        if self._old_map(accessor, partition) is not None:
            if self._root_directory(accessor, partition) is not None:
                return True
        record, _ = self._disc_record(accessor, partition)
        if record is None or not disc_record_sane(record):
            return False
        return record.disc_bytes <= accessor.size

    def _extract(self, accessor, partition, draft, report, encoding):
        old = self._old_map(accessor, partition)
        if old is not None and self._root_directory(accessor, partition) is not None:
            self._extract_old_map(accessor, partition, draft, report, encoding, *old)
            return

        record, source = self._disc_record(accessor, partition)
        if record is None or not disc_record_sane(record):
            raise MalformedStructure("disc record no longer validates")
        if record.disc_bytes > accessor.size:
            raise MalformedStructure(f"disc record declares {record.disc_bytes} bytes")

        zones = record.nzones_high * 2 ** 32 + record.nzones
        sector_bytes = 1 << record.log2secsize

        draft.cluster_size = sector_bytes
        draft.clusters = record.disc_bytes >> record.log2secsize
        draft.bootable = record.bootoption != 0
        if record.disc_id:
            draft.volume_serial = f"{record.disc_id:04X}"
        if any(record.disc_name):
            draft.volume_name = text(record.disc_name.split(b"\x00", 1)[0], encoding)

        report.add(f"Disc record found in the {source}")
        report.add(f"Version {record.format_version}")
        report.add(f"{sector_bytes} bytes per sector")
        report.add(f"{record.spt} sectors per track")
        report.add(f"{record.heads} heads")
        report.add(f"Density code: {record.density}")
        report.add(f"Skew: {record.skew}")
        report.add(f"Boot option: {record.bootoption}")
        report.add(f"Root starts at frag {record.root}")
        report.add(f"Volume has {record.disc_bytes} bytes in {zones} zones")
        report.add(f"Volume flags: 0x{record.flags:04X}")
        if draft.volume_serial:
            report.add(f"Volume ID: {draft.volume_serial}")
        if draft.volume_name:
            report.add(f"Volume name: {draft.volume_name}")

    def _extract_old_map(self, accessor, partition, draft, report, encoding, map0, map1):
        ss = accessor.sector_size
        disc_bytes = old_map_bytes(map0)

        draft.cluster_size = ss
        draft.clusters = disc_bytes // ss
        draft.bootable = map1.boot != 0
        if map1.disc_id:
            draft.volume_serial = f"{map1.disc_id:04X}"
        name = self._old_map_name(accessor, partition, map0, map1)
        if name:
            draft.volume_name = text(name, encoding)

        report.add("Old map found in the first two map sectors")
        report.add(f"{ss} bytes per sector")
        report.add(f"Volume has {disc_bytes} bytes")
        report.add(f"Boot option: {map1.boot}")
        if draft.volume_serial:
            report.add(f"Volume ID: {draft.volume_serial}")
        if draft.volume_name:
            report.add(f"Volume name: {draft.volume_name}")
