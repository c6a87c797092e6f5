"""Render a structure tree as an indented outline."""

import io
from collections.abc import Sequence

from ebook_sync.models.tree import TreeNode


def render_tree(
    nodes: Sequence[TreeNode],
    *,
    max_depth: int | None = None,
    show_ids: bool = False,
) -> str:
    """Render tree nodes as an indented bullet outline.

    Args:
        nodes: Root-level nodes to render.
        max_depth: Max levels below the roots to include (None = unlimited).
        show_ids: Append each node's id.

    Returns:
        Text with one line per node; folders carry their note count.
    """
    out = io.StringIO()
    # Explicit stack instead of recursion; pushed reversed to keep source order.
    todo: list[tuple[TreeNode, int]] = [(n, 0) for n in reversed(nodes)]
    while todo:
        node, depth = todo.pop()
        indent = "    " * depth
        suffix = f"  [id={node.id}]" if show_ids else ""

        if node.is_folder:
            noun = "note" if node.note_count == 1 else "notes"
            out.write(f"{indent}+ {node.name} ({node.note_count} {noun}){suffix}\n")
        else:
            out.write(f"{indent}- {node.name}{suffix}\n")

        if not node.children:
            continue
        if max_depth is not None and depth >= max_depth:
            n = len(node.children)
            out.write(f"{indent}    ... ({n} more {'entry' if n == 1 else 'entries'})\n")
            continue
        todo.extend((c, depth + 1) for c in reversed(node.children))

    return out.getvalue()
