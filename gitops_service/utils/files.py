"""Reading pushed directories from local disk.

The HTTP layer resolves a caller-supplied directory into the
``FileEntry`` list the publisher works on. Paths must stay inside the
configured incoming root, and skip rules are passed in as a predicate.
"""

from collections.abc import Callable, Iterable
from pathlib import Path

from gitops_service.exceptions import ValidationError
from gitops_service.models.domain import FileEntry

ExcludePredicate = Callable[[Path], bool]


def validate_dir(directory: str, incoming_dir: str) -> Path:
    """Resolve ``directory`` and require it to be inside ``incoming_dir``.

    ``..`` segments are resolved first, and a sibling that merely shares the
    prefix (``/mnt/incoming-evil``) is rejected.

    Raises:
        ValidationError: The resolved path escapes ``incoming_dir``
    """
    base = Path(incoming_dir).resolve()
    resolved = Path(directory).resolve()
    if resolved != base and base not in resolved.parents:
        raise ValidationError(f"dir must be inside {base}")
    return resolved


def excluding(names: Iterable[str]) -> ExcludePredicate:
    """Predicate that skips any entry whose name is in ``names``."""
    skip = frozenset(names)
    return lambda path: path.name in skip


def read_dir_files(root: str | Path, exclude: ExcludePredicate | None = None) -> list[FileEntry]:
    """Read every file under ``root``.

    Args:
        root: Directory to read
        exclude: Called for each file and directory; True skips it (and,
            for a directory, everything below it)

    Returns:
        Files with POSIX paths relative to ``root``, in sorted walk order

    Raises:
        ValidationError: Missing directory, not a directory, or a file that
            is not valid UTF-8
    """
    root = Path(root)
    if not root.exists():
        raise ValidationError(f"Directory not found: {root}")
    if not root.is_dir():
        raise ValidationError(f"Path is not a directory: {root}")

    files: list[FileEntry] = []
    stack = [root]
    while stack:
        current = stack.pop()
        subdirs = []
        for entry in sorted(current.iterdir()):
            if exclude is not None and exclude(entry):
                continue
            if entry.is_dir():
                subdirs.append(entry)
            elif entry.is_file():
                try:
                    content = entry.read_text(encoding="utf-8")
                except UnicodeDecodeError as e:
                    raise ValidationError(f"File is not valid UTF-8: {entry}") from e
                files.append(FileEntry(path=entry.relative_to(root).as_posix(), content=content))
        # reversed so subdirectories are popped in sorted order
        stack.extend(reversed(subdirs))

    return files
