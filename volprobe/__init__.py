# volprobe — Legacy filesystem detection & volume metadata extraction
# Pure-Python superblock probing over raw sector images.
#
# Architecture (bottom → top):
#   errors        — Probe error taxonomy (out of range, malformed, checksum, ambiguous)
#   accessor      — Sector reads relative to a partition + sector-size normalization
#   tsk_accessor  — Optional pytsk3 (Sleuth Kit) image reader + cross-check
#   structs       — Endian-aware layout decoder (BE / LE / PDP, strings, split 64-bit)
#   checksums     — Amiga / Acorn block checksums
#   dates         — Mac / Unix / Amiga / ProDOS / ISO 9660 timestamps
#   descriptor    — Normalized VolumeDescriptor + text report
#   detectors     — One identify/extract pair per on-disk format
#   registry      — Ordered detector list, dispatch + ambiguity diagnostics
#   config        — ProbeConfig (CLI flags map onto it)

__version__ = "1.0.0"
