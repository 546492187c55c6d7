from dataclasses import dataclass, field
from typing import Dict, Set

from ..exceptions import FormatMismatchError


@dataclass
class CacheSnapshot:
    """In-memory form of the persisted association record."""

    format_version: str
    created_at: int  # epoch ms
    entries: Dict[str, Set[str]] = field(default_factory=dict)

    def to_record(self) -> dict:
        return {
            'formatVersion': self.format_version,
            'createdAt': self.created_at,
            'entries': {peer: sorted(resources) for peer, resources in self.entries.items() if resources},
        }

    @classmethod
    def from_record(cls, record, expected_version: str) -> 'CacheSnapshot':
        """Parse a stored record, rejecting any other format version or shape."""
        if not isinstance(record, dict):
            raise FormatMismatchError(f"Snapshot record must be a mapping, got {type(record).__name__}")

        version = record.get('formatVersion')
        if version != expected_version:
            raise FormatMismatchError(f"Snapshot format {version!r} does not match expected {expected_version!r}")

        created_at = record.get('createdAt')
        entries = record.get('entries')
        if isinstance(created_at, bool) or not isinstance(created_at, (int, float)):
            raise FormatMismatchError("Snapshot createdAt must be an epoch-ms number")
        if not isinstance(entries, dict):
            raise FormatMismatchError("Snapshot entries must be a mapping")

        parsed: Dict[str, Set[str]] = {}
        for peer, resources in entries.items():
            if not isinstance(resources, (list, tuple, set)):
                raise FormatMismatchError(f"Entry for peer {peer} must be a list of resources")
            if resources:
                parsed[str(peer)] = {str(r) for r in resources}

        return cls(format_version=version, created_at=int(created_at), entries=parsed)
