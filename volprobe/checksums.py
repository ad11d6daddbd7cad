"""
Block Checksums — bit-exact recomputation of on-disk checksum fields.

All functions are pure: they read their input and never write to it.
Formats that checksum a block containing its own checksum field go
through ``zeroed`` first, which returns a private copy with that field
cleared.
"""

import struct


def zeroed(buf: bytes, offset: int, width: int = 4) -> bytes:
    """Private copy of ``buf`` with ``width`` bytes at ``offset`` cleared."""
    copy = bytearray(buf)
    copy[offset:offset + width] = b"\x00" * width
    return bytes(copy)


def _be_words(buf: bytes):
    usable = len(buf) - len(buf) % 4
    return struct.unpack_from(">%dI" % (usable // 4), buf, 0)


def amiga_boot_checksum(buf: bytes) -> int:
    """
    AmigaDOS boot block checksum.

    Sum of big-endian 32-bit words where every unsigned overflow adds
    one back into the accumulator; result is the complement.
    """
    total = 0
    for word in _be_words(buf):
        total += word
        if total > 0xFFFFFFFF:
            total = (total & 0xFFFFFFFF) + 1
    return ~total & 0xFFFFFFFF


def amiga_block_checksum(buf: bytes) -> int:
    """AmigaDOS root/header block checksum: negated wrapping word sum."""
    total = sum(_be_words(buf)) & 0xFFFFFFFF
    return -total & 0xFFFFFFFF


def acorn_boot_checksum(buf: bytes, length: int = 0x1FF) -> int:
    """Acorn boot block check: 8-bit sum with end-around carry over ``length`` bytes."""
    chk = 0
    for b in buf[:length]:
        chk = (chk & 0xFF) + (chk >> 8) + b
    return chk


def acorn_old_map_checksum(buf: bytes, length: int = 0xFF) -> int:
    """
    Acorn old-map check byte.

    Bytes are added from ``length - 1`` down to 0; a sum that passes
    0xFF is truncated and carries one into the next addition.
    """
    total = carry = 0
    for b in reversed(buf[:length]):
        total += b + carry
        if total > 0xFF:
            carry = 1
            total &= 0xFF
        else:
            carry = 0
    return total


def acorn_new_map_checksum(zone: bytes) -> int:
    """
    Acorn new-map zone check byte.

    Four interleaved byte lanes walked from the end of the zone down,
    each lane carrying into the next; byte 0 (the check byte itself) is
    excluded.  Result is the XOR of the four lanes.
    """
    s0 = s1 = s2 = s3 = 0
    rover = len(zone) - 4
    while rover > 0:
        s0 += zone[rover] + (s3 >> 8)
        s3 &= 0xFF
        s1 += zone[rover + 1] + (s0 >> 8)
        s0 &= 0xFF
        s2 += zone[rover + 2] + (s1 >> 8)
        s1 &= 0xFF
        s3 += zone[rover + 3] + (s2 >> 8)
        s2 &= 0xFF
        rover -= 4

    s0 += s3 >> 8
    s1 += zone[1] + (s0 >> 8)
    s2 += zone[2] + (s1 >> 8)
    s3 += zone[3] + (s2 >> 8)
    return (s0 ^ s1 ^ s2 ^ s3) & 0xFF
