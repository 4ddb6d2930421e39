"""Internal cluster model and provider state translation."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional

from lib.exceptions import MalformedResponseError

# RFC 3339 with an optional fraction of any length (Go trims trailing zeros)
_TIMESTAMP_PATTERN = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2}[Tt ]\d{2}:\d{2}:\d{2})(?:\.(?P<fraction>\d+))?(?P<offset>[Zz]|[+-]\d{2}:\d{2})?$"
)


class ClusterState(Enum):
    """Internal cluster status."""

    UNKNOWN = "unknown"
    PENDING = "pending"
    INSTALLING = "installing"
    READY = "ready"
    UNINSTALLING = "uninstalling"
    ERROR = "error"


_OCM_STATES = {
    "error": ClusterState.ERROR,
    "installing": ClusterState.INSTALLING,
    "pending": ClusterState.PENDING,
    "ready": ClusterState.READY,
    "uninstalling": ClusterState.UNINSTALLING,
}


def ocm_state_to_cluster_state(state: Optional[str]) -> ClusterState:
    """Translate an OCM cluster state; anything unrecognized is UNKNOWN."""
    if not isinstance(state, str):
        return ClusterState.UNKNOWN
    return _OCM_STATES.get(state.lower(), ClusterState.UNKNOWN)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp into an aware UTC datetime.

    Fractions of any length are accepted; digits past microseconds are dropped.

    Raises:
        MalformedResponseError: The value is not an RFC 3339 timestamp
    """
    if not value:
        return None

    match = _TIMESTAMP_PATTERN.match(value) if isinstance(value, str) else None
    if match is None:
        raise MalformedResponseError(f"Invalid timestamp {value!r}")

    normalized = match.group("base")[:10] + "T" + match.group("base")[11:]
    if match.group("fraction"):
        normalized += "." + match.group("fraction")[:6].ljust(6, "0")
    offset = match.group("offset")
    if offset and offset not in ("Z", "z"):
        normalized += offset

    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError as e:
        raise MalformedResponseError(f"Invalid timestamp {value!r}: {e}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render a datetime the way the provider expects it."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _ref_id(record: Dict[str, Any], key: str) -> str:
    ref = record.get(key) or {}
    return ref.get("id", "") if isinstance(ref, dict) else ""


@dataclass(frozen=True)
class Cluster:
    """A provider cluster as seen by the lifecycle engine."""

    id: str
    name: str
    region: str = ""
    cloud_provider: str = ""
    flavour: str = ""
    version: str = ""
    multi_az: bool = False
    compute_nodes: int = 0
    expiration_timestamp: Optional[datetime] = None
    state: ClusterState = ClusterState.UNKNOWN
    addons: FrozenSet[str] = frozenset()
    properties: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_ocm(cls, record: Dict[str, Any], addon_ids: Iterable[str] = ()) -> "Cluster":
        """Build a Cluster from an OCM cluster record and its addon installations."""
        nodes = record.get("nodes") or {}
        return cls(
            id=record.get("id", ""),
            name=record.get("name", ""),
            region=_ref_id(record, "region"),
            cloud_provider=_ref_id(record, "cloud_provider"),
            flavour=_ref_id(record, "flavour"),
            version=_ref_id(record, "version"),
            multi_az=bool(record.get("multi_az", False)),
            compute_nodes=int(nodes.get("compute") or 0),
            expiration_timestamp=parse_timestamp(record.get("expiration_timestamp")),
            state=ocm_state_to_cluster_state(record.get("state")),
            addons=frozenset(addon_ids),
            properties=dict(record.get("properties") or {}),
        )

    def has_addon(self, addon_id: str) -> bool:
        return addon_id in self.addons
