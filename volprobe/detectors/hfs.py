"""
Apple HFS and HFS+ / HFSX detectors.

HFS keeps its Master Directory Block at byte 0x400 of the volume.
HFS+ keeps its Volume Header at byte 0x400, optionally wrapped inside an
HFS volume whose MDB records where the embedded HFS+ volume starts.

The two detectors are mutually exclusive: an HFS MDB carrying the
embedded "H+" signature is left to the HFS+ detector.
"""

import logging

from ..accessor import (
    read_checked, read_bytes, probe_sub_offsets, is_optical, sectors_for,
)
from ..dates import mac_to_datetime
from ..errors import OutOfRange, MalformedStructure
from ..structs import Layout, Field, BIG, decode, text
from .base import Detector

logger = logging.getLogger(__name__)

HFS_MAGIC = 0x4244          # "BD"
HFSP_MAGIC = 0x482B         # "H+"
HFSX_MAGIC = 0x4858         # "HX"
HFSBB_MAGIC = 0x4C4B        # "LK", boot block present

MDB_OFFSET = 0x400
VOLUME_HEADER_OFFSET = 0x400

# Attribute bit set when the volume was cleanly unmounted
ATTR_UNMOUNTED = 0x0100

MDB = Layout("HfsMasterDirectoryBlock", [
    Field("drSigWord", 0x000, "u16"),
    Field("drCrDate", 0x002, "u32"),
    Field("drLsMod", 0x006, "u32"),
    Field("drAtrb", 0x00A, "u16"),
    Field("drNmFls", 0x00C, "u16"),
    Field("drVBMSt", 0x00E, "u16"),
    Field("drAllocPtr", 0x010, "u16"),
    Field("drNmAlBlks", 0x012, "u16"),
    Field("drAlBlkSiz", 0x014, "u32"),
    Field("drClpSiz", 0x018, "u32"),
    Field("drAlBlSt", 0x01C, "u16"),
    Field("drNxtCNID", 0x01E, "u32"),
    Field("drFreeBks", 0x022, "u16"),
    Field("drVN", 0x024, "pstr", length=28),
    Field("drVolBkUp", 0x040, "u32"),
    Field("drVSeqNum", 0x044, "u16"),
    Field("drWrCnt", 0x046, "u32"),
    Field("drXTClpSiz", 0x04A, "u32"),
    Field("drCTClpSiz", 0x04E, "u32"),
    Field("drNmRtDirs", 0x052, "u16"),
    Field("drFilCnt", 0x054, "u32"),
    Field("drDirCnt", 0x058, "u32"),
    Field("drFndrInfo", 0x05C, "u32", count=8),
    Field("drEmbedSigWord", 0x07C, "u16"),
    Field("xdrStABNt", 0x07E, "u16"),
    Field("xdrNumABlks", 0x080, "u16"),
])

BOOT_BLOCK = Layout("HfsBootBlock", [
    Field("signature", 0x000, "u16"),
    Field("entry", 0x002, "u32"),
    Field("version", 0x006, "u16"),
    Field("system_name", 0x00A, "pstr", length=16),
    Field("finder_name", 0x01A, "pstr", length=16),
])

VOLUME_HEADER = Layout("HfsPlusVolumeHeader", [
    Field("signature", 0x00, "u16"),
    Field("version", 0x02, "u16"),
    Field("attributes", 0x04, "u32"),
    Field("lastMountedVersion", 0x08, "raw", length=4),
    Field("journalInfoBlock", 0x0C, "u32"),
    Field("createDate", 0x10, "u32"),
    Field("modifyDate", 0x14, "u32"),
    Field("backupDate", 0x18, "u32"),
    Field("checkedDate", 0x1C, "u32"),
    Field("fileCount", 0x20, "u32"),
    Field("folderCount", 0x24, "u32"),
    Field("blockSize", 0x28, "u32"),
    Field("totalBlocks", 0x2C, "u32"),
    Field("freeBlocks", 0x30, "u32"),
    Field("nextAllocation", 0x34, "u32"),
    Field("rsrcClumpSize", 0x38, "u32"),
    Field("dataClumpSize", 0x3C, "u32"),
    Field("nextCatalogID", 0x40, "u32"),
    Field("writeCount", 0x44, "u32"),
    Field("encodingsBitmap", 0x48, "u64"),
    Field("finderInfo", 0x50, "u32", count=8),
])


def _sig(buf: bytes, offset: int) -> int:
    return int.from_bytes(buf[offset:offset + 2], "big")


def _mac_date(seconds: int):
    return mac_to_datetime(seconds) if seconds > 0 else None


# ─────────────────────────────────────────────────────────────
#  HFS
# ─────────────────────────────────────────────────────────────

class HfsDetector(Detector):
    format_id = "hfs"
    name = "Apple Hierarchical File System"
    type_tag = "HFS"
    encoding = "mac_roman"

    def _locate(self, accessor, partition):
        """
        Find the MDB.  Returns (mdb_bytes, boot_bytes, from_512_on_optical)
        or None.

        The MDB sits at byte 0x400 of the volume whatever the sector
        size.  On optical media an HFS volume mastered for 512-byte
        sectors may also sit at any sub-offset of the first two LBAs;
        the sub-offset search finds it there.
        """
        ss = accessor.sector_size
        if not is_optical(ss):
            try:
                mdb = read_bytes(accessor, partition, MDB_OFFSET, MDB.size)
            except OutOfRange:
                return None
            if _sig(mdb, 0) != HFS_MAGIC:
                return None
            return mdb, read_bytes(accessor, partition, 0, BOOT_BLOCK.size), False

        hit = probe_sub_offsets(accessor, partition, 0, 512,
                                lambda b: _sig(b, 0) == HFS_MAGIC)
        if hit is None:
            return None
        off, mdb = hit
        logger.debug("HFS sector size is 512 bytes, but device's %d", ss)
        boot = b""
        if off >= MDB_OFFSET:
            raw = read_checked(accessor, partition, 0, 2)
            boot = bytes(raw[off - MDB_OFFSET:off - MDB_OFFSET + 512])
        return mdb, boot, True

    def _identify(self, accessor, partition) -> bool:
        found = self._locate(accessor, partition)
        if found is None:
            return False
        mdb = found[0]
        # Wrapper around an embedded HFS+ volume belongs to HFS+
        return _sig(mdb, 0x7C) != HFSP_MAGIC

    def _extract(self, accessor, partition, draft, report, encoding):
        found = self._locate(accessor, partition)
        if found is None:
            raise MalformedStructure("master directory block not found")
        raw, boot_raw, apm_on_cd = found
        mdb = decode(raw, MDB, BIG)
        fi = mdb.drFndrInfo

        draft.type = "HFS"
        draft.volume_name = text(mdb.drVN, encoding)
        draft.files = mdb.drFilCnt
        draft.clusters = mdb.drNmAlBlks
        draft.cluster_size = mdb.drAlBlkSiz
        draft.free_clusters = mdb.drFreeBks
        draft.dirty = (mdb.drAtrb & ATTR_UNMOUNTED) == 0
        draft.creation_date = _mac_date(mdb.drCrDate)
        draft.modification_date = _mac_date(mdb.drLsMod)
        draft.backup_date = _mac_date(mdb.drVolBkUp)
        if fi[6] and fi[7]:
            draft.volume_serial = f"{fi[6]:08X}{fi[7]:08x}"

        if apm_on_cd:
            report.add("HFS uses 512 bytes/sector while device uses 2048 bytes/sector.")
        report.add("Master Directory Block:")
        for label, value in (("Creation date", draft.creation_date),
                             ("Last modification date", draft.modification_date),
                             ("Last backup date", draft.backup_date)):
            report.add(f"{label}: {value}" if value else f"{label}: never")
        if mdb.drAtrb & 0x80:
            report.add("Volume is locked by hardware.")
        report.add("Volume was cleanly unmounted." if not draft.dirty else "Volume is mounted.")
        if mdb.drAtrb & 0x8000:
            report.add("Volume is locked by software.")
        report.add(f"{mdb.drNmFls} files on root directory")
        report.add(f"{mdb.drNmAlBlks} allocation blocks on volume")
        report.add(f"{mdb.drAlBlkSiz} bytes per allocation block")
        report.add(f"{mdb.drClpSiz} bytes to allocate when extending a file")
        report.add(f"{mdb.drNxtCNID} is next available CNID")
        report.add(f"{mdb.drFreeBks} free allocation blocks")
        report.add(f"Volume name: {draft.volume_name}")
        report.add(f"Volume has been mounted writable {mdb.drWrCnt} times")
        report.add(f"{mdb.drNmRtDirs} directories in root directory")
        report.add(f"{mdb.drFilCnt} files in the volume")
        report.add(f"{mdb.drDirCnt} directories in the volume")
        if draft.volume_serial:
            report.add(f"Mac OS X Volume ID: {draft.volume_serial}")

        if len(boot_raw) >= BOOT_BLOCK.size:
            boot = decode(boot_raw, BOOT_BLOCK, BIG)
            draft.bootable = boot.signature == HFSBB_MAGIC
            if draft.bootable:
                report.add("Volume is bootable.")
                report.add(f"System filename: {text(boot.system_name, encoding)}")
                report.add(f"Finder filename: {text(boot.finder_name, encoding)}")
            else:
                report.add("Volume is not bootable.")


# ─────────────────────────────────────────────────────────────
#  HFS+ / HFSX
# ─────────────────────────────────────────────────────────────

class HfsPlusDetector(Detector):
    format_id = "hfsplus"
    name = "Apple HFS+ filesystem"
    type_tag = "HFS+"
    encoding = "mac_roman"

    def _header(self, accessor, partition):
        """(volume header bytes, wrapped) read through an HFS wrapper if present."""
        ss = accessor.sector_size
        count = sectors_for(0x800, ss)
        data = read_checked(accessor, partition, 0, count)

        offset = 0
        if _sig(data, 0x400) == HFS_MAGIC and _sig(data, 0x47C) == HFSP_MAGIC:
            xdr_st_abnt = _sig(data, 0x47E)
            dr_al_blk_siz = int.from_bytes(data[0x414:0x418], "big")
            dr_al_bl_st = _sig(data, 0x41C)
            offset = (dr_al_bl_st * 512 + xdr_st_abnt * dr_al_blk_siz) // ss
            data = read_checked(accessor, partition, offset, count)
        return data, offset

    def _identify(self, accessor, partition) -> bool:
        if 2 + partition.start >= partition.end:
            return False
        data, _ = self._header(accessor, partition)
        return _sig(data, VOLUME_HEADER_OFFSET) in (HFSP_MAGIC, HFSX_MAGIC)

    def _extract(self, accessor, partition, draft, report, encoding):
        data, offset = self._header(accessor, partition)
        vh = decode(data, VOLUME_HEADER, BIG, VOLUME_HEADER_OFFSET)
        if vh.signature not in (HFSP_MAGIC, HFSX_MAGIC):
            raise MalformedStructure("volume header signature lost")

        draft.type = "HFS+" if vh.signature == HFSP_MAGIC else "HFSX"
        report.add("HFS+ filesystem." if vh.signature == HFSP_MAGIC else "HFSX filesystem.")
        if offset:
            report.add(f"Volume is wrapped inside an HFS volume, {offset} sectors in")

        if vh.version not in (4, 5):
            report.add(f"Filesystem version is {vh.version}.")
            report.add("This version is not supported yet.")
            return
        report.add(f"Filesystem version is {vh.version}.")

        fi = vh.finderInfo
        draft.cluster_size = vh.blockSize
        draft.clusters = vh.totalBlocks
        draft.free_clusters = vh.freeBlocks
        draft.files = vh.fileCount
        draft.dirty = (vh.attributes & ATTR_UNMOUNTED) == 0
        draft.bootable = bool(fi[0] or fi[3] or fi[5])
        draft.system_identifier = text(vh.lastMountedVersion, "ascii")
        draft.creation_date = _mac_date(vh.createDate)
        draft.modification_date = _mac_date(vh.modifyDate)
        draft.backup_date = _mac_date(vh.backupDate)
        if fi[6] and fi[7]:
            draft.volume_serial = f"{fi[6]:08X}{fi[7]:08X}"

        attr_notes = (
            (0x80, "Volume is locked on hardware."),
            (0x100, "Volume is unmounted."),
            (0x200, "There are bad blocks in the extents file."),
            (0x400, "Volume does not require cache."),
            (0x800, "Volume state is inconsistent."),
            (0x1000, "CNIDs are reused."),
            (0x2000, "Volume is journaled."),
            (0x8000, "Volume is locked on software."),
        )
        for bit, note in attr_notes:
            if vh.attributes & bit:
                report.add(note)
        if vh.attributes & 0x2000:
            report.add(f"Journal starts at allocation block {vh.journalInfoBlock}.")

        report.add(f"Last mounted by \"{draft.system_identifier}\"")
        for label, value in (("Volume created on", vh.createDate),
                             ("Last modification date", vh.modifyDate),
                             ("Last backup date", vh.backupDate),
                             ("Last check date", vh.checkedDate)):
            when = _mac_date(value)
            report.add(f"{label}: {when}" if when else f"{label}: never")
        report.add(f"{vh.fileCount} files on volume.")
        report.add(f"{vh.folderCount} folders on volume.")
        report.add(f"{vh.blockSize} bytes per allocation block.")
        report.add(f"{vh.totalBlocks} allocation blocks.")
        report.add(f"{vh.freeBlocks} free blocks.")
        report.add(f"Next allocation block: {vh.nextAllocation}.")
        report.add(f"Resource fork clump size: {vh.rsrcClumpSize} bytes.")
        report.add(f"Data fork clump size: {vh.dataClumpSize} bytes.")
        report.add(f"Next unused CNID: {vh.nextCatalogID}.")
        report.add(f"Volume has been mounted writable {vh.writeCount} times.")
        report.add(f"Encodings bitmap: 0x{vh.encodingsBitmap:016X}")
        if draft.bootable:
            report.add(f"Bootable system's directory CNID {fi[0]}")
        if draft.volume_serial:
            report.add(f"Mac OS X Volume ID: {draft.volume_serial}")
