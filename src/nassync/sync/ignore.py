"""Exclusion patterns for profile trees.

This module provides:
- ExclusionPatterns: rsync-style exclude matching on relative paths

The same pattern list is handed to rsync as ``--exclude`` options, so the
matching here follows rsync's common cases: a pattern without a slash
matches any path component, a leading slash anchors it to the profile
root and a trailing slash restricts it to directories.
"""

from __future__ import annotations

import fnmatch
from pathlib import PurePosixPath


class ExclusionPatterns:
    """Handles exclusion pattern matching for file paths."""

    def __init__(self, patterns: list[str] | tuple[str, ...] | None = None) -> None:
        """Initialize with patterns.

        Args:
            patterns: List of rsync-style exclude patterns.
        """
        self._patterns: list[str] = [p for p in (patterns or ()) if p.strip()]

    def matches_relative(self, rel_path: str, is_dir: bool = False) -> bool:
        """Check a path relative to the profile root.

        Args:
            rel_path: Forward-slash relative path.
            is_dir: Whether the path itself is a directory.

        Returns:
            True if the path is excluded.
        """
        rel_path = rel_path.strip("/")
        if not rel_path:
            return False
        parts = PurePosixPath(rel_path).parts

        for raw in self._patterns:
            pattern = raw
            dir_only = pattern.endswith("/")
            if dir_only:
                pattern = pattern.rstrip("/")
            anchored = pattern.startswith("/")
            if anchored:
                pattern = pattern.lstrip("/")

            if "/" in pattern or anchored:
                # Path pattern: match from the root, and anything beneath it
                if fnmatch.fnmatch(rel_path, pattern) and (is_dir or not dir_only):
                    return True
                for depth in range(1, len(parts)):
                    if fnmatch.fnmatch("/".join(parts[:depth]), pattern):
                        return True
                continue

            # Component pattern: any ancestor directory, or the entry itself
            for index, part in enumerate(parts):
                is_last = index == len(parts) - 1
                if dir_only and is_last and not is_dir:
                    continue
                if fnmatch.fnmatch(part, pattern):
                    return True

        return False

    def __bool__(self) -> bool:
        return bool(self._patterns)
