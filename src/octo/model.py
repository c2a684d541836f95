"""
Data models and normalization helpers for octo.

This module defines the dataclasses that represent engine resources as the
rest of the application sees them, plus the small helpers that turn raw
engine records into those values.

Data Classes:
  - ContainerInfo: container metadata (ids, name, image, state, ports, size)
  - ImageInfo: one repository:tag entry of an image (or one dangling entry)
  - VolumeInfo: volume metadata and whether any container mounts it
  - NetworkInfo: network metadata and connected-container count
  - DiskUsageInfo: per-category byte totals and reclaimable bytes
  - ContainerMetrics: one-shot resource usage of a container
  - LogEntry: one parsed log line
  - ConfirmationInfo: dry-run description of a destructive operation
  - ResourceSnapshot: result of an aggregate refresh, with warnings

Helpers:
  - truncate_id / trim_image_id: short identifiers for display and matching
  - parse_image_tag: split "repo:tag" without breaking registry ports
  - format_ports: "8080->80/tcp, 443/tcp"
  - format_bytes: 1024-based human sizes
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import IntEnum
from typing import Any, Dict, List, Optional, Tuple

SHORT_ID_LENGTH = 12
SYSTEM_NETWORKS = frozenset({"bridge", "host", "none"})


def truncate_id(value: str, max_len: int = SHORT_ID_LENGTH) -> str:
    """Return the leading `max_len` characters of `value` (all of it if shorter)."""
    return value[:max_len]


def trim_image_id(image_id: str) -> str:
    """Strip a leading "sha256:" and shorten to 12 characters."""
    if image_id.startswith("sha256:"):
        image_id = image_id[len("sha256:"):]
    return truncate_id(image_id, SHORT_ID_LENGTH)


def parse_image_tag(ref: str) -> Tuple[str, str]:
    """
    Split an image reference into (repository, tag).

    Scans right to left; the first ':' seen before any '/' separates the tag.
    A ':' to the left of a '/' belongs to a registry host:port.

    >>> parse_image_tag("registry.example.com:5000/app:v1")
    ('registry.example.com:5000/app', 'v1')
    >>> parse_image_tag("nginx")
    ('nginx', 'latest')
    """
    for i in range(len(ref) - 1, -1, -1):
        if ref[i] == ':':
            return ref[:i], ref[i + 1:]
        if ref[i] == '/':
            break
    return ref, "latest"


def format_ports(ports: Optional[List[Dict[str, Any]]]) -> str:
    if not ports:
        return ""
    parts = []
    for p in ports:
        private = p.get('PrivatePort', 0)
        proto = p.get('Type', 'tcp')
        public = p.get('PublicPort') or 0
        if public:
            parts.append(f"{public}->{private}/{proto}")
        else:
            parts.append(f"{private}/{proto}")
    return ", ".join(parts)


def format_bytes(n: int) -> str:
    """Format a byte count as "512 B", "1.5 KB", "2.0 GB"."""
    unit = 1024
    if n < unit:
        return f"{n} B"
    div, exp = unit, 0
    value = n // unit
    while value >= unit and exp < 5:
        div *= unit
        exp += 1
        value //= unit
    return f"{n / div:.1f} {'KMGTPE'[exp]}B"


_RFC3339 = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})[Tt](\d{2}):(\d{2}):(\d{2})(?:\.(\d{1,9}))?([Zz]|[+-]\d{2}:\d{2})"
)


def parse_rfc3339(text: str) -> Optional[datetime]:
    """Parse an RFC3339 instant with up to nanosecond precision (truncated to micro)."""
    m = _RFC3339.fullmatch(text)
    if not m:
        return None
    year, month, day, hour, minute, second = (int(g) for g in m.groups()[:6])
    micro = int(((m.group(7) or "") + "000000")[:6])
    zone = m.group(8)
    if zone in ("Z", "z"):
        tz = timezone.utc
    else:
        sign = -1 if zone[0] == "-" else 1
        tz = timezone(sign * timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6])))
    try:
        return datetime(year, month, day, hour, minute, second, micro, tzinfo=tz)
    except ValueError:
        return None


def parse_created(value: Any) -> Optional[datetime]:
    """Engine creation instants come as epoch seconds or RFC3339 strings."""
    if isinstance(value, (int, float)) and value > 0:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str) and value:
        return parse_rfc3339(value)
    return None


def strip_container_name(names: Optional[List[str]]) -> str:
    """First engine name with its leading '/' removed."""
    if not names:
        return ""
    name = names[0]
    if name.startswith('/'):
        name = name[1:]
    return name


class SafetyTier(IntEnum):
    """How much emphasis a confirmation deserves. Never changes engine behavior."""
    INFORMATIONAL = 0
    LOW_RISK = 1
    MODERATE = 2
    HIGH_RISK = 3
    BULK_DESTRUCTIVE = 4

    @property
    def label(self) -> str:
        return {
            SafetyTier.INFORMATIONAL: "Informational",
            SafetyTier.LOW_RISK: "Low risk",
            SafetyTier.MODERATE: "Moderate",
            SafetyTier.HIGH_RISK: "High risk",
            SafetyTier.BULK_DESTRUCTIVE: "Bulk destructive",
        }[self]


@dataclass
class ContainerInfo:
    id: str
    short_id: str
    name: str
    image: str
    status: str
    state: str  # running, exited, created, dead, paused
    created: Optional[datetime] = None
    ports: str = ""
    size: int = 0  # writable layer, bytes
    labels: Dict[str, str] = field(default_factory=dict)

    @property
    def running(self) -> bool:
        return self.state == "running"


@dataclass
class ImageInfo:
    id: str  # sha256: stripped, 12 chars
    full_id: str
    repository: str
    tag: str
    size: int
    created: Optional[datetime] = None
    containers: int = 0
    dangling: bool = False

    @property
    def reference(self) -> str:
        if self.dangling:
            return "<none>"
        return f"{self.repository}:{self.tag}"


@dataclass
class VolumeInfo:
    name: str
    driver: str
    mountpoint: str
    size: Optional[int] = None
    created: Optional[datetime] = None
    labels: Dict[str, str] = field(default_factory=dict)
    in_use: bool = False


@dataclass
class NetworkInfo:
    id: str
    short_id: str
    name: str
    driver: str
    scope: str
    internal: bool = False
    containers: int = 0

    @property
    def is_system(self) -> bool:
        return self.name in SYSTEM_NETWORKS


@dataclass
class DiskUsageInfo:
    images_bytes: int = 0
    containers_bytes: int = 0
    volumes_bytes: int = 0
    build_cache_bytes: int = 0
    reclaimable_bytes: int = 0
    total_bytes: int = 0


@dataclass
class ContainerMetrics:
    container_id: str
    cpu_percent: float = 0.0
    memory_usage: int = 0
    memory_limit: int = 0
    memory_percent: float = 0.0
    network_rx: int = 0
    network_tx: int = 0
    block_read: int = 0
    block_write: int = 0
    pids: int = 0


@dataclass
class LogEntry:
    timestamp: datetime
    stream: str  # stdout or stderr
    content: str

    def format(self) -> str:
        """Render as "YYYY-MM-DD HH:MM:SS  stream  content"."""
        ts = self.timestamp.strftime("%Y-%m-%d %H:%M:%S")
        return f"{ts}  {self.stream:<6}  {self.content}"


@dataclass
class ConfirmationInfo:
    tier: SafetyTier
    title: str
    description: str
    resources: List[str] = field(default_factory=list)
    reversible: bool = False
    undo_instructions: str = ""
    warnings: List[str] = field(default_factory=list)


@dataclass
class ResourceSnapshot:
    containers: List[ContainerInfo] = field(default_factory=list)
    images: List[ImageInfo] = field(default_factory=list)
    volumes: List[VolumeInfo] = field(default_factory=list)
    networks: List[NetworkInfo] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class PruneResult:
    """Outcome of one category of a system prune; `error` is set when it failed."""
    resource: str
    reclaimed_bytes: int = 0
    error: Optional[str] = None
