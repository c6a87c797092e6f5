"""Domain models for backend structures and the unified tree."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class NodeKind(StrEnum):
    FOLDER = "folder"
    NOTE = "note"


@dataclass(frozen=True)
class TreeNode:
    """A node of the unified structure tree shared by both backends."""

    id: str
    name: str
    kind: NodeKind
    children: tuple["TreeNode", ...] = ()
    note_count: int = 0
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_folder(self) -> bool:
        return self.kind is NodeKind.FOLDER

    def to_dict(self) -> dict[str, Any]:
        """Serialize this node and its descendants to plain JSON types."""
        return {
            "id": self.id,
            "name": self.name,
            "kind": str(self.kind),
            "note_count": self.note_count,
            "metadata": dict(self.metadata),
            "children": [c.to_dict() for c in self.children],
        }


@dataclass(frozen=True)
class FlatFolder:
    """A folder record from the flat backend."""

    id: str
    parent_id: str | None
    title: str


@dataclass(frozen=True)
class FlatNote:
    """A note record from the flat backend."""

    id: str
    parent_id: str | None
    title: str
    updated_time: int | str | None = None


@dataclass(frozen=True)
class NestedSourceNode:
    """A node from the nested backend (notebook, section group, section or page)."""

    id: str
    name: str
    type: str
    children: tuple["NestedSourceNode", ...] = ()
    page_count: int = 0
    metadata: Mapping[str, Any] = field(default_factory=dict)
