"""
Microsoft FAT12 / FAT16 / FAT32 detector.

Identification works from the BIOS Parameter Block in sector 0.  Other
formats that reuse the same boot-sector shape (exFAT, NTFS, QNX4, HPFS)
are rejected first by their own signatures; after that the BPB must
look like one of the shapes DOS and its successors actually wrote:

  - FAT32 EBPB with "FAT32   " type string
  - short FAT32 EBPB (signature 0x28, no label / type string)
  - MSX-DOS BPB with "VOL_ID"
  - FAT12/16 EBPB (signature 0x28 or 0x29)
  - plain DOS 2.x/3.x BPB

FAT type is decided by cluster count (< 4085 FAT12, < 65525 FAT16).
Free space comes from the FAT32 FSInfo sector, or from walking the FAT
on FAT12/16.
"""

import struct
import logging
from typing import Optional

from ..accessor import read_checked, read_bytes, is_optical
from ..errors import OutOfRange, MalformedStructure
from ..structs import Layout, Field, LITTLE, decode, text
from .base import Detector

logger = logging.getLogger(__name__)

FAT12_MAX_CLUSTERS = 4085
FAT16_MAX_CLUSTERS = 65525

BOOT_SIGNATURE = 0xAA55

HPFS_MAGIC1 = 0xF995E849
HPFS_MAGIC2 = 0xFA53E9C5
HPFS_SUPERBLOCK = 16

FSINFO_SIGNATURE1 = 0x41615252
FSINFO_SIGNATURE2 = 0x61417272
FSINFO_SIGNATURE3 = 0xAA550000

LEGAL_SPC = (1, 2, 4, 8, 16, 32, 64)

BPB = Layout("BiosParameterBlock", [
    Field("jump", 0x000, "raw", length=3),
    Field("oem_name", 0x003, "raw", length=8),
    Field("bps", 0x00B, "u16"),
    Field("spc", 0x00D, "u8"),
    Field("reserved_sectors", 0x00E, "u16"),
    Field("fats", 0x010, "u8"),
    Field("root_entries", 0x011, "u16"),
    Field("sectors", 0x013, "u16"),
    Field("media", 0x015, "u8"),
    Field("fat_sectors", 0x016, "u16"),
    Field("sectors_per_track", 0x018, "u16"),
    Field("heads", 0x01A, "u16"),
    Field("hidden_sectors", 0x01C, "u32"),
    Field("big_sectors", 0x020, "u32"),
    # FAT12/16 extended BPB
    Field("drive_number", 0x024, "u8"),
    Field("flags", 0x025, "u8"),
    Field("signature", 0x026, "u8"),
    Field("serial", 0x027, "u32"),
    Field("label", 0x02B, "raw", length=11),
    Field("fs_type", 0x036, "raw", length=8),
    # FAT32 extended BPB, overlapping the above
    Field("big_spfat", 0x024, "u32"),
    Field("mirror_flags", 0x028, "u16"),
    Field("version", 0x02A, "u16"),
    Field("root_cluster", 0x02C, "u32"),
    Field("fsinfo_sector", 0x030, "u16"),
    Field("backup_sector", 0x032, "u16"),
    Field("fat32_drive_number", 0x040, "u8"),
    Field("fat32_flags", 0x041, "u8"),
    Field("fat32_signature", 0x042, "u8"),
    Field("fat32_serial", 0x043, "u32"),
    Field("fat32_label", 0x047, "raw", length=11),
    Field("fat32_fs_type", 0x052, "raw", length=8),
    Field("huge_sectors", 0x052, "u64"),
    Field("boot_signature", 0x1FE, "u16"),
], size=0x200)

FSINFO = Layout("FsInfoSector", [
    Field("signature1", 0x000, "u32"),
    Field("signature2", 0x1E4, "u32"),
    Field("free_clusters", 0x1E8, "u32"),
    Field("last_cluster", 0x1EC, "u32"),
    Field("signature3", 0x1FC, "u32"),
])


def _one_bit(value: int) -> bool:
    return value != 0 and value & (value - 1) == 0


def bpb_sectors(sector_size: int) -> int:
    """Sectors holding the 512-byte boot sector."""
    return 512 // sector_size if sector_size < 512 else 1


def serial_text(serial: int) -> str:
    return f"{serial >> 16:04X}-{serial & 0xFFFF:04X}"


class FatDetector(Detector):
    format_id = "fat"
    name = "Microsoft File Allocation Table"
    type_tag = "FAT"
    encoding = "ascii"

    def _boot(self, accessor, partition):
        data = read_checked(accessor, partition, 0, bpb_sectors(accessor.sector_size))
        return decode(data, BPB, LITTLE)

    @staticmethod
    def _counts(accessor, bpb) -> tuple[int, int, int]:
        """Sector counts from the BPB; hybrid ISO/USB images count 512-byte sectors."""
        sectors, big, huge = bpb.sectors, bpb.big_sectors, bpb.huge_sectors
        if is_optical(accessor.sector_size):
            sectors //= 4
            big //= 4
            huge //= 4
        return sectors, big, huge

    def _foreign(self, accessor, partition, bpb) -> Optional[str]:
        """Name of another format owning this boot sector, if any."""
        if bpb.oem_name == b"EXFAT   ":
            return "exFAT"
        if (bpb.oem_name == b"NTFS    " and bpb.boot_signature == BOOT_SIGNATURE
                and bpb.fats == 0 and bpb.fat_sectors == 0):
            return "NTFS"
        if bpb.oem_name == b"FQNX4FS ":
            return "QNX4"
        if HPFS_SUPERBLOCK + partition.start <= partition.end:
            sb = read_checked(accessor, partition, HPFS_SUPERBLOCK, 1)
            if len(sb) >= 8 and struct.unpack_from("<II", sb, 0) == (HPFS_MAGIC1, HPFS_MAGIC2):
                return "HPFS"
        return None

    def _shape(self, accessor, partition, bpb) -> Optional[str]:
        """Which BPB shape this boot sector has, or None."""
        length = partition.length
        sectors, big, huge = self._counts(accessor, bpb)
        if not _one_bit(bpb.bps) or bpb.spc not in LEGAL_SPC or bpb.fats > 2:
            return None

        if bpb.fat_sectors == 0 and bpb.fat32_signature == 0x29 and bpb.fat32_fs_type == b"FAT32   ":
            return "fat32"
        if bpb.fat_sectors == 0 and bpb.fat32_signature == 0x28:
            declared = sectors or big or huge
            return "fat32_short" if declared <= length else None
        if (bpb.root_entries > 0 and bpb.fat_sectors > 0 and sectors <= length
                and bpb.fat32_fs_type[:6] == b"VOL_ID"):
            return "msx"
        if bpb.root_entries > 0 and bpb.fat_sectors > 0 and bpb.signature in (0x28, 0x29):
            return "ebpb" if (sectors or big) <= length else None
        if (bpb.reserved_sectors < partition.end - partition.start
                and bpb.root_entries > 0 and bpb.fat_sectors > 0):
            return "bpb" if (sectors or big) <= length else None
        return None

    def _identify(self, accessor, partition) -> bool:
        if 2 + partition.start >= partition.end:
            return False
        bpb = self._boot(accessor, partition)
        foreign = self._foreign(accessor, partition, bpb)
        if foreign:
            logger.debug("FAT: boot sector belongs to %s", foreign)
            return False
        return self._shape(accessor, partition, bpb) is not None

    def _extract(self, accessor, partition, draft, report, encoding):
        bpb = self._boot(accessor, partition)
        shape = self._shape(accessor, partition, bpb)
        if shape is None:
            raise MalformedStructure("BIOS parameter block no longer validates")
        fat32 = shape in ("fat32", "fat32_short")
        sectors, big, huge = self._counts(accessor, bpb)
        total = sectors or big or (huge if shape == "fat32_short" else 0)

        spfat = bpb.big_spfat if fat32 else bpb.fat_sectors
        root_sectors = (bpb.root_entries * 32 + bpb.bps - 1) // bpb.bps
        first_data = bpb.reserved_sectors + bpb.fats * spfat + root_sectors
        clusters = max(0, total - first_data) // bpb.spc

        if fat32:
            fat_type = "FAT32"
        elif clusters < FAT12_MAX_CLUSTERS:
            fat_type = "FAT12"
        elif clusters < FAT16_MAX_CLUSTERS:
            fat_type = "FAT16"
        else:
            fat_type = "FAT32"

        draft.type = fat_type
        draft.cluster_size = bpb.bps * bpb.spc
        draft.clusters = clusters
        draft.bootable = bpb.boot_signature == BOOT_SIGNATURE and accessor.sector_size >= 512

        oem = text(bpb.oem_name, "ascii").rstrip(" ")
        report.add(f"Microsoft {fat_type}")
        report.add(f"OEM name: {oem}")
        report.add(f"{bpb.bps} bytes per sector")
        report.add(f"{bpb.spc} sectors per cluster")
        report.add(f"{clusters} clusters on volume ({clusters * draft.cluster_size} bytes)")
        report.add(f"{bpb.reserved_sectors} sectors reserved")
        report.add(f"{bpb.fats} FATs")
        report.add(f"{spfat} sectors per FAT")
        report.add(f"Media descriptor: 0x{bpb.media:02X}")
        if bpb.hidden_sectors:
            report.add(f"{bpb.hidden_sectors} hidden sectors before BPB")

        if fat32:
            self._fat32(accessor, partition, bpb, shape, draft, report, encoding)
        else:
            report.add(f"{bpb.root_entries} entries on root directory")
            if shape == "ebpb":
                self._label(bpb.signature, bpb.serial, bpb.label, draft, report, encoding)
                self._flags(bpb.flags, draft, report)
            if fat_type != "FAT32":
                self._walk_fat(accessor, partition, bpb, fat_type, clusters, draft, report)

        if draft.bootable:
            report.add("Volume is bootable")

    def _label(self, signature, serial, label, draft, report, encoding):
        draft.volume_serial = serial_text(serial)
        report.add(f"Volume Serial Number: {draft.volume_serial}")
        if signature == 0x29:
            name = text(label, encoding).rstrip(" ")
            if name and name != "NO NAME":
                draft.volume_name = name
                report.add(f"Volume label: {name}")

    @staticmethod
    def _flags(flags, draft, report):
        if flags & 0xF8 == 0:
            if flags & 0x01:
                draft.dirty = True
                report.add("Volume should be checked on next mount.")
            if flags & 0x02:
                report.add("Disk surface should be checked on next mount.")

    def _fat32(self, accessor, partition, bpb, shape, draft, report, encoding):
        if shape == "fat32":
            self._label(bpb.fat32_signature, bpb.fat32_serial, bpb.fat32_label, draft, report, encoding)
        else:
            draft.volume_serial = serial_text(bpb.fat32_serial)
            report.add(f"Volume Serial Number: {draft.volume_serial}")
        self._flags(bpb.fat32_flags, draft, report)

        if bpb.mirror_flags & 0x80:
            report.add(f"FATs are out of sync. FAT #{bpb.mirror_flags & 0xF} is in use.")
        else:
            report.add("All copies of FAT are the same.")
        report.add(f"Root directory starts on cluster {bpb.root_cluster}")
        report.add(f"Filesystem version {bpb.version >> 8}.{bpb.version & 0xFF}")

        if 0 < bpb.fsinfo_sector < bpb.reserved_sectors:
            try:
                raw = read_bytes(accessor, partition, bpb.fsinfo_sector * bpb.bps, FSINFO.size)
            except OutOfRange as e:
                report.add(f"FSInfo sector unreadable ({e})")
                return
            info = decode(raw, FSINFO, LITTLE)
            if (info.signature1, info.signature2, info.signature3) == \
                    (FSINFO_SIGNATURE1, FSINFO_SIGNATURE2, FSINFO_SIGNATURE3):
                if info.free_clusters < 0xFFFFFFFF:
                    draft.free_clusters = info.free_clusters
                    report.add(f"{info.free_clusters} free clusters")
                if 2 < info.last_cluster < 0xFFFFFFFF:
                    report.add(f"Last allocated cluster {info.last_cluster}")
            else:
                logger.debug("FAT32: FSInfo at sector %d has bad signatures", bpb.fsinfo_sector)

    def _walk_fat(self, accessor, partition, bpb, fat_type, clusters, draft, report):
        """Count free FAT12/16 entries (value 0) in the first FAT."""
        fat_offset = bpb.reserved_sectors * bpb.bps
        fat_size = bpb.fat_sectors * bpb.bps
        try:
            fat_data = read_bytes(accessor, partition, fat_offset, fat_size)
        except OutOfRange as e:
            report.add(f"FAT unreadable, free space unknown ({e})")
            return

        is_fat12 = fat_type == "FAT12"
        free_count = 0
        for cluster_num in range(2, clusters + 2):
            if is_fat12:
                # 12 bits per entry, packed
                byte_pos = (cluster_num * 3) // 2
                if byte_pos + 1 >= len(fat_data):
                    break
                if cluster_num & 1:
                    entry = ((fat_data[byte_pos] >> 4) | (fat_data[byte_pos + 1] << 4)) & 0x0FFF
                else:
                    entry = (fat_data[byte_pos] | ((fat_data[byte_pos + 1] & 0x0F) << 8)) & 0x0FFF
            else:
                byte_pos = cluster_num * 2
                if byte_pos + 1 >= len(fat_data):
                    break
                entry = struct.unpack_from("<H", fat_data, byte_pos)[0]
            if entry == 0:
                free_count += 1

        draft.free_clusters = free_count
        logger.debug("%s: %d free clusters out of %d", fat_type, free_count, clusters)
        report.add(f"{free_count} free clusters")
