"""
Reconciliation Projection - Turn applied file operations into views for the UI.

Produces the path-to-content map the editor tabs read from and the
hierarchical tree the file explorer renders. Nodes are keyed by name under
their parent and children are emitted in a fixed order, so projecting the
same file set twice gives structurally identical trees regardless of the
order the operations arrived in.
"""

from typing import Dict, Iterable, List, Mapping, Optional

from webuild.logging import get_logger
from webuild.schemas import FileNode, FileOperation, Projection
from webuild.utils import guess_language_from_filename, make_zip_bytes, safe_project_name

logger = get_logger("webuild.projection")


def apply_operations(
    files: Iterable[FileOperation],
    base: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """
    Apply file operations in order on top of an existing file map.

    Create and update set the content (last write wins), delete removes the path.

    Args:
        files: File operations in apply order
        base: Existing path-to-content map (left untouched)

    Returns:
        New path-to-content map
    """
    contents = dict(base or {})
    for op in files:
        if op.is_delete:
            contents.pop(op.path, None)
        else:
            contents[op.path] = op.content
    return contents


def build_tree(contents: Mapping[str, str], project_name: str = "project") -> FileNode:
    """
    Build the explorer tree for a path-to-content map.

    Args:
        contents: Map of file path to file content
        project_name: Name shown on the root folder

    Returns:
        Root folder node
    """
    root = FileNode(name=safe_project_name(project_name), type="folder", path="")

    for file_path in sorted(contents):
        parts = [p for p in file_path.split("/") if p]
        current = root

        for index, part in enumerate(parts):
            is_file = index == len(parts) - 1
            node_path = "/".join(parts[: index + 1])
            existing = current.children.get(part)

            if existing is None:
                if is_file:
                    existing = FileNode(
                        name=part,
                        type="file",
                        path=node_path,
                        size=len(contents[file_path].encode("utf-8")),
                        language=guess_language_from_filename(part),
                    )
                else:
                    existing = FileNode(name=part, type="folder", path=node_path)
                current.children[part] = existing
            elif existing.is_file != is_file:
                # a path cannot be both a file and a folder
                logger.warning("projection.path_conflict", path=file_path, conflict=node_path)
                break

            current = existing

    return _ordered(root)


def _ordered(node: FileNode) -> FileNode:
    """Re-insert children folders first, then alphabetically."""
    if not node.children:
        return node
    ordered = sorted(node.children.values(), key=lambda child: (child.is_file, child.name.lower(), child.name))
    node.children = {child.name: _ordered(child) for child in ordered}
    return node


def project(
    files: Iterable[FileOperation],
    base: Optional[Mapping[str, str]] = None,
    project_name: str = "project",
) -> Projection:
    """
    Project applied file operations into a content map and a tree.

    Args:
        files: File operations in apply order
        base: Files already applied in earlier cycles
        project_name: Name shown on the root folder

    Returns:
        Projection with contents and tree
    """
    contents = apply_operations(files, base)
    return Projection(contents=contents, tree=build_tree(contents, project_name))


def render_file_tree(tree: FileNode) -> List[str]:
    """Flat, indented listing of the tree (root excluded)."""
    lines: List[str] = []

    def walk(node: FileNode, depth: int) -> None:
        for child in node.children.values():
            icon = "📄" if child.is_file else "📁"
            lines.append(f"{'  ' * depth}{icon} {child.name}")
            if not child.is_file:
                walk(child, depth + 1)

    walk(tree, 0)
    return lines


def first_file(tree: FileNode) -> Optional[FileNode]:
    """Return the first file in display order, or None for an empty tree."""
    if tree.is_file:
        return tree
    for child in tree.children.values():
        found = first_file(child)
        if found is not None:
            return found
    return None


def export_archive(projection: Projection) -> bytes:
    """Zip the projected files under a folder named after the project."""
    return make_zip_bytes(projection.contents, root=projection.tree.name)
