"""Normalize flat and nested backend structures into one tree of TreeNodes."""

from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import replace
from typing import Any

from ebook_sync.exceptions import StructuralCycleError
from ebook_sync.models.tree import FlatFolder, FlatNote, NestedSourceNode, NodeKind, TreeNode

UNTITLED = "(untitled)"

# Nested source types rendered as folders; everything else is a note.
NESTED_FOLDER_TYPES = frozenset({"notebook", "section_group", "section"})


def _parent_key(parent_id: Any) -> str | None:
    """Normalize a parent id; None and "" both mean the root."""
    if parent_id is None or parent_id == "":
        return None
    return str(parent_id)


class StructureSource(ABC):
    """A backend structure snapshot that can be built into the unified tree."""

    @abstractmethod
    def build(self) -> tuple[TreeNode, ...]:
        """Return the root-level tree nodes. Pure; the source is not modified."""


class FlatStructure(StructureSource):
    """Folders and notes as parallel arrays linked by ``parent_id``.

    Folder nodes come before note nodes under each parent, each group in
    source order. A folder's ``note_count`` is its direct notes plus the
    ``note_count`` of its child folders. Records whose parent does not exist
    are left out of the tree entirely.
    """

    def __init__(self, folders: Sequence[FlatFolder], notes: Sequence[FlatNote]) -> None:
        # Ids are compared as strings everywhere below; payload ids may be ints.
        self.folders = tuple(
            replace(f, id=str(f.id), parent_id=_parent_key(f.parent_id)) for f in folders
        )
        self.notes = tuple(
            replace(n, id=str(n.id), parent_id=_parent_key(n.parent_id)) for n in notes
        )

    @classmethod
    def from_payload(
        cls, folders: Iterable[dict[str, Any]], notes: Iterable[dict[str, Any]]
    ) -> "FlatStructure":
        return cls(
            [
                FlatFolder(
                    id=f["id"],
                    parent_id=f.get("parent_id"),
                    title=f.get("title") or "",
                )
                for f in folders
            ],
            [
                FlatNote(
                    id=n["id"],
                    parent_id=n.get("parent_id"),
                    title=n.get("title") or "",
                    updated_time=n.get("updated_time"),
                )
                for n in notes
            ],
        )

    def build(self) -> tuple[TreeNode, ...]:
        self._check_acyclic()

        folders_by_parent: defaultdict[str | None, list[FlatFolder]] = defaultdict(list)
        for folder in self.folders:
            folders_by_parent[_parent_key(folder.parent_id)].append(folder)
        notes_by_parent: defaultdict[str | None, list[FlatNote]] = defaultdict(list)
        for note in self.notes:
            notes_by_parent[_parent_key(note.parent_id)].append(note)

        children, _count = self._build_level(None, (), folders_by_parent, notes_by_parent)
        return children

    def _check_acyclic(self) -> None:
        """Walk every folder's parent chain, including chains unreachable from the root."""
        parent_of: dict[str, str | None] = {}
        for folder in self.folders:
            parent_of.setdefault(folder.id, _parent_key(folder.parent_id))

        acyclic: set[str] = set()
        for start in parent_of:
            chain: list[str] = []
            on_chain: set[str] = set()
            current: str | None = start
            while current is not None and current in parent_of and current not in acyclic:
                if current in on_chain:
                    raise StructuralCycleError([*chain[chain.index(current):], current])
                chain.append(current)
                on_chain.add(current)
                current = parent_of[current]
            acyclic.update(chain)

    def _build_level(
        self,
        parent_id: str | None,
        ancestors: tuple[str, ...],
        folders_by_parent: dict[str | None, list[FlatFolder]],
        notes_by_parent: dict[str | None, list[FlatNote]],
    ) -> tuple[tuple[TreeNode, ...], int]:
        """Build the children of one parent; return them with their total note count."""
        nodes: list[TreeNode] = []
        total = 0

        for folder in folders_by_parent.get(parent_id, ()):
            if folder.id in ancestors:
                raise StructuralCycleError([*ancestors[ancestors.index(folder.id):], folder.id])
            children, count = self._build_level(
                folder.id, (*ancestors, folder.id), folders_by_parent, notes_by_parent
            )
            nodes.append(
                TreeNode(
                    id=folder.id,
                    name=folder.title,
                    kind=NodeKind.FOLDER,
                    children=children,
                    note_count=count,
                )
            )
            total += count

        for note in notes_by_parent.get(parent_id, ()):
            nodes.append(
                TreeNode(
                    id=note.id,
                    name=note.title or UNTITLED,
                    kind=NodeKind.NOTE,
                    metadata={"updated_time": note.updated_time},
                )
            )
            total += 1

        return tuple(nodes), total


def _parse_nested(data: dict[str, Any]) -> NestedSourceNode:
    return NestedSourceNode(
        id=str(data["id"]),
        name=data.get("name") or "",
        type=data.get("type") or "",
        children=tuple(_parse_nested(c) for c in data.get("children") or ()),
        page_count=data.get("pageCount") or 0,
        metadata=data.get("metadata") or {},
    )


class NestedStructure(StructureSource):
    """An already hierarchical notebook tree.

    ``note_count`` is the source's ``pageCount`` as reported, not a count of
    descendants.
    """

    def __init__(self, nodes: Sequence[NestedSourceNode]) -> None:
        self.nodes = tuple(nodes)

    @classmethod
    def from_payload(cls, payload: Iterable[dict[str, Any]]) -> "NestedStructure":
        return cls([_parse_nested(n) for n in payload])

    def build(self) -> tuple[TreeNode, ...]:
        return tuple(self._convert(node, ()) for node in self.nodes)

    def _convert(self, node: NestedSourceNode, ancestors: tuple[str, ...]) -> TreeNode:
        if node.id in ancestors:
            raise StructuralCycleError([*ancestors[ancestors.index(node.id):], node.id])
        path = (*ancestors, node.id)
        return TreeNode(
            id=node.id,
            name=node.name,
            kind=NodeKind.FOLDER if node.type in NESTED_FOLDER_TYPES else NodeKind.NOTE,
            children=tuple(self._convert(c, path) for c in node.children),
            note_count=node.page_count,
            metadata=node.metadata,
        )


def build_tree(source: StructureSource) -> tuple[TreeNode, ...]:
    """Build the unified tree from any structure source."""
    return source.build()
