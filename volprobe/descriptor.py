"""
Volume Descriptor — the normalized record a winning detector produces,
plus the human-readable report that travels with it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VolumeDescriptor:
    """Result of extracting one recognized volume."""
    type: str                               # "HFS", "ext4", "affs", ...
    cluster_size: int = 0                   # Bytes per allocation unit
    clusters: int = 0                       # Allocation units in the volume
    free_clusters: Optional[int] = None
    files: Optional[int] = None
    volume_name: str = ""
    volume_serial: str = ""
    creation_date: Optional[datetime] = None
    modification_date: Optional[datetime] = None
    backup_date: Optional[datetime] = None
    expiration_date: Optional[datetime] = None
    effective_date: Optional[datetime] = None
    system_identifier: str = ""             # Creator OS / last mounted by
    dirty: bool = False
    bootable: bool = False

    @property
    def size_bytes(self) -> int:
        return self.cluster_size * self.clusters

    @property
    def free_percent(self) -> float:
        if not self.clusters or self.free_clusters is None:
            return 0.0
        return (self.free_clusters / self.clusters) * 100

    @property
    def summary(self) -> str:
        parts = [self.type]
        if self.volume_name:
            parts.append(f'"{self.volume_name}"')
        if self.clusters:
            parts.append(f"{self.clusters} × {self.cluster_size} B ({_human(self.size_bytes)})")
        if self.free_clusters is not None:
            parts.append(f"{self.free_percent:.1f}% free")
        if self.dirty:
            parts.append("dirty")
        if self.bootable:
            parts.append("bootable")
        return ", ".join(parts)

    def lines(self) -> list[str]:
        """One ``name: value`` line per populated field."""
        out = []
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None or value == "":
                continue
            out.append(f"{f.name.replace('_', ' ').capitalize()}: {value}")
        return out


@dataclass
class DescriptorDraft:
    """Mutable builder filled field by field during one extract call."""
    type: str
    cluster_size: int = 0
    clusters: int = 0
    free_clusters: Optional[int] = None
    files: Optional[int] = None
    volume_name: str = ""
    volume_serial: str = ""
    creation_date: Optional[datetime] = None
    modification_date: Optional[datetime] = None
    backup_date: Optional[datetime] = None
    expiration_date: Optional[datetime] = None
    effective_date: Optional[datetime] = None
    system_identifier: str = ""
    dirty: bool = False
    bootable: bool = False

    def freeze(self) -> VolumeDescriptor:
        return VolumeDescriptor(**{f.name: getattr(self, f.name) for f in fields(self)})


@dataclass
class Report:
    """Human-readable extraction report, built line by line."""
    title: str
    lines: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def add(self, line: str):
        self.lines.append(line)

    def warn(self, message: str):
        logger.warning("%s: %s", self.title, message)
        self.warnings.append(message)
        self.lines.append(f"WARNING: {message}")

    @property
    def text(self) -> str:
        return "\n".join([self.title] + self.lines) + "\n"


def _human(nbytes: int) -> str:
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if nbytes < 1024:
            return f"{nbytes:.1f} {unit}"
        nbytes /= 1024
    return f"{nbytes:.1f} PB"
