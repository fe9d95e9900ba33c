"""
Path safety checks for destination-affecting file operations.

Every path the sorter creates, moves into or removes is proven to lie inside
its expected root after symlinks are resolved.
"""

import os
from pathlib import Path
from typing import Iterable, Optional, Union

from .exceptions import (
    DestinationOutsideBaseDirectory,
    InvalidDestinationComponent,
    UnsafeDestinationSymlink,
)

PathLike = Union[str, os.PathLike]

INVALID_COMPONENT_CHARS = ("/", ":", "\x00")


def canonicalize(path: PathLike) -> Path:
    """Absolute path with every existing symlink resolved."""
    return Path(os.path.realpath(os.path.abspath(os.fspath(path))))


def is_within(candidate: PathLike, root: PathLike) -> bool:
    """
    True if candidate equals root or lies below it, compared after both are
    canonicalized. Fails closed if either path cannot be resolved.
    """
    try:
        canonical_candidate = str(canonicalize(candidate))
        canonical_root = str(canonicalize(root))
    except (OSError, ValueError):
        return False

    if canonical_candidate == canonical_root:
        return True

    prefix = canonical_root if canonical_root.endswith(os.sep) else canonical_root + os.sep
    return canonical_candidate.startswith(prefix)


def is_within_any(candidate: PathLike, roots: Iterable[Optional[PathLike]]) -> bool:
    """True if candidate is within any root that is set."""
    return any(root is not None and is_within(candidate, root) for root in roots)


def validate_path_component(name: str, label: str = "folder name") -> str:
    """Reject names that could change the directory a path points into."""
    if name is None or not name.strip():
        raise InvalidDestinationComponent(f"Invalid {label}: name is empty")
    if name in (".", ".."):
        raise InvalidDestinationComponent(f"Invalid {label}: '{name}'")
    for ch in INVALID_COMPONENT_CHARS:
        if ch in name:
            raise InvalidDestinationComponent(
                f"Invalid {label} '{name.replace(chr(0), '')}': contains {ch!r}"
            )
    return name


def ensure_within(candidate: PathLike, root: PathLike) -> None:
    """Raise DestinationOutsideBaseDirectory unless candidate is within root."""
    if not is_within(candidate, root):
        raise DestinationOutsideBaseDirectory(
            f"Destination '{candidate}' resolves outside base directory '{root}'"
        )


def ensure_not_symlink(path: PathLike) -> None:
    """An existing destination folder must be a real directory, not a link."""
    if os.path.islink(os.fspath(path)):
        raise UnsafeDestinationSymlink(f"Destination folder is a symbolic link: {path}")


def ensure_safe_folder(folder: PathLike, base: PathLike) -> None:
    """Containment plus symlink check for one destination folder."""
    ensure_within(folder, base)
    ensure_not_symlink(folder)
