from __future__ import annotations

from collections.abc import Iterable

from .schemas import EntryKind, FolderEntry

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg")


def find_unreferenced(entries: Iterable[FolderEntry], content: str) -> list[FolderEntry]:
    """Return image files whose name and full path never occur in ``content``.

    This is a literal substring check, not a parser: an image referenced only
    indirectly (built URL, CSS variable) is reported as orphaned.
    """
    images = [
        entry
        for entry in entries
        if entry.kind == EntryKind.FILE and entry.name.lower().endswith(IMAGE_EXTENSIONS)
    ]
    return [
        entry
        for entry in images
        if entry.name not in content and entry.path not in content
    ]
