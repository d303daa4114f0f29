"""Immutable catalog snapshots of key -> filename entries."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from importlib import resources
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterator, Mapping, Optional, Tuple, Union

EMBEDDED_CATALOG = "image-map.json"


class CatalogError(RuntimeError):
    """Raised when catalog data cannot be turned into a usable snapshot."""


class MalformedCatalogError(CatalogError):
    """Raised when the payload is not a JSON object of string -> string."""


class EmptyCatalogError(CatalogError):
    """Raised when the payload parses but contains no entries."""


@dataclass(frozen=True)
class Entry:
    """A single catalog record."""

    key: str
    value: str


def hash_content(content: Union[bytes, str]) -> str:
    """Return the SHA-256 hex digest used to detect unchanged payloads."""

    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


@dataclass(frozen=True)
class Catalog:
    """Immutable snapshot of entries, sorted by key ascending.

    Instances are built through :meth:`from_mapping` or :meth:`from_bytes`
    and never mutated afterwards; a reload replaces the whole object.
    """

    _entries: Tuple[Entry, ...]
    _keys: Tuple[str, ...]
    _index: Mapping[str, Entry] = field(repr=False)
    content_hash: str
    loaded_at: datetime

    @classmethod
    def from_mapping(cls, raw: Any, *, content_hash: Optional[str] = None) -> "Catalog":
        """Build a catalog from a mapping of key -> filename."""

        if not isinstance(raw, Mapping):
            raise MalformedCatalogError(
                f"Catalog must be a mapping of key to filename, got {type(raw).__name__}"
            )

        for key, value in raw.items():
            if not isinstance(key, str) or not isinstance(value, str):
                raise MalformedCatalogError(
                    f"Catalog entries must map strings to strings, got {key!r}: {value!r}"
                )

        if not raw:
            raise EmptyCatalogError("Catalog contains no entries")

        keys = tuple(sorted(raw))
        entries = tuple(Entry(key=key, value=raw[key]) for key in keys)
        index = MappingProxyType({entry.key: entry for entry in entries})
        if content_hash is None:
            content_hash = hash_content(json.dumps(dict(raw), sort_keys=True))

        return cls(
            _entries=entries,
            _keys=keys,
            _index=index,
            content_hash=content_hash,
            loaded_at=datetime.now(timezone.utc),
        )

    @classmethod
    def from_bytes(cls, payload: Union[bytes, str]) -> "Catalog":
        """Parse a JSON object payload into a catalog."""

        try:
            text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
            data = json.loads(text)
        except (UnicodeDecodeError, ValueError) as exc:
            raise MalformedCatalogError(f"Catalog payload is not valid JSON: {exc}") from exc

        if not isinstance(data, dict):
            raise MalformedCatalogError(
                f"Catalog payload must be a JSON object, got {type(data).__name__}"
            )
        return cls.from_mapping(data, content_hash=hash_content(payload))

    def entries(self) -> Tuple[Entry, ...]:
        return self._entries

    def keys(self) -> Tuple[str, ...]:
        return self._keys

    def size(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[Entry]:
        return self._index.get(key)

    @property
    def oldest_key(self) -> str:
        return self._keys[0]

    @property
    def newest_key(self) -> str:
        return self._keys[-1]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Entry]:
        return iter(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._index


def load_catalog_file(path: Path) -> Catalog:
    """Read and parse a catalog from ``path``."""

    path = Path(path).expanduser()
    try:
        payload = path.read_bytes()
    except FileNotFoundError as exc:
        raise MalformedCatalogError(f"Catalog file not found: {path}") from exc
    except OSError as exc:
        raise MalformedCatalogError(f"Unable to read catalog file {path}: {exc}") from exc
    return Catalog.from_bytes(payload)


def load_embedded_catalog() -> Catalog:
    """Return the catalog bundled with the package."""

    payload = resources.files("roulette.data").joinpath(EMBEDDED_CATALOG).read_bytes()
    return Catalog.from_bytes(payload)


def load_initial_catalog(path: Optional[Path]) -> Catalog:
    """Load the startup catalog from ``path`` or fall back to the embedded one."""

    if path is not None:
        return load_catalog_file(path)
    return load_embedded_catalog()
