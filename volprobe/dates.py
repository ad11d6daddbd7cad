"""Timestamp conversions for the epochs legacy volumes use.  Bad values → None."""

from datetime import datetime, timedelta
from typing import Optional

MAC_EPOCH = datetime(1904, 1, 1)
UNIX_EPOCH = datetime(1970, 1, 1)
AMIGA_EPOCH = datetime(1978, 1, 1)

# ProDOS packed timestamp bit fields (two LE words, date word first)
_PRODOS_YEAR = 0xFE000000
_PRODOS_MONTH = 0x01E00000
_PRODOS_DAY = 0x001F0000
_PRODOS_HOUR = 0x00001F00
_PRODOS_MINUTE = 0x0000003F


def _after(epoch: datetime, **delta) -> Optional[datetime]:
    try:
        return epoch + timedelta(**delta)
    except OverflowError:
        return None


def mac_to_datetime(seconds: int) -> Optional[datetime]:
    """Seconds since 1904-01-01 (HFS / HFS+)."""
    return _after(MAC_EPOCH, seconds=seconds)


def unix_to_datetime(seconds: int) -> Optional[datetime]:
    return _after(UNIX_EPOCH, seconds=seconds)


def amiga_to_datetime(days: int, minutes: int, ticks: int) -> Optional[datetime]:
    """AmigaDOS DateStamp: days since 1978-01-01, minutes, 1/50 s ticks."""
    if days == 0 and minutes == 0 and ticks == 0:
        return None
    return _after(AMIGA_EPOCH, days=days, minutes=minutes, seconds=ticks / 50)


def prodos_to_datetime(date_word: int, time_word: int) -> Optional[datetime]:
    packed = ((date_word << 16) + time_word) & 0xFFFFFFFF
    year = ((packed & _PRODOS_YEAR) >> 25) + 1900
    if year < 1940:
        year += 100
    month = (packed & _PRODOS_MONTH) >> 21
    day = (packed & _PRODOS_DAY) >> 16
    hour = (packed & _PRODOS_HOUR) >> 8
    minute = packed & _PRODOS_MINUTE
    try:
        return datetime(year, month, day, hour, minute)
    except ValueError:
        return None


def iso9660_to_datetime(raw: bytes) -> Optional[datetime]:
    """
    ISO 9660 volume descriptor date: 16 ASCII digits
    (YYYYMMDDHHMMSScc) + GMT offset byte in 15-minute units.

    All-zero digits mean "not specified".  The offset is applied so the
    result is UTC-based, naive.
    """
    if len(raw) < 16:
        return None
    digits = raw[:16]
    if digits.strip(b"0\x00 ") == b"":
        return None
    try:
        s = digits.decode("ascii")
        dt = datetime(int(s[0:4]), int(s[4:6]), int(s[6:8]),
                      int(s[8:10]), int(s[10:12]), int(s[12:14]),
                      int(s[14:16]) * 10000)
    except (UnicodeDecodeError, ValueError):
        return None
    if len(raw) >= 17:
        gmt = raw[16] - 256 if raw[16] > 127 else raw[16]
        dt -= timedelta(minutes=15 * gmt)
    return dt
