from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence


@dataclass
class DirectoryEntry:
    """A search result: the entry's DN and its attributes (always multi-valued)."""

    dn: str
    attributes: Dict[str, List[str]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._index = {name.lower(): name for name in self.attributes}

    def get_all(self, name: str) -> List[str]:
        key = self._index.get(name.lower())
        if key is None:
            return []
        return list(self.attributes[key])

    def get(self, name: str) -> Optional[str]:
        values = self.get_all(name)
        return values[0] if values else None


class DirectoryAdapter(Protocol):
    """Narrow contract the RBAC graph needs from a directory backend."""

    def create_entry(
        self,
        dn: str,
        object_classes: Sequence[str],
        attributes: Mapping[str, Any],
    ) -> None:
        ...

    def search_one(
        self, base_dn: str, search_filter: str, attributes: Iterable[str] = ("*",)
    ) -> Optional[DirectoryEntry]:
        ...

    def search_children(
        self, base_dn: str, search_filter: str, attributes: Iterable[str] = ("*",)
    ) -> List[DirectoryEntry]:
        ...

    def search_subtree(
        self, base_dn: str, search_filter: str, attributes: Iterable[str] = ("*",)
    ) -> List[DirectoryEntry]:
        ...

    def close(self) -> None:
        ...
