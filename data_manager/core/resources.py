"""Bundled resource lookup.

Schema descriptions and mappings ship with the host application as plain
files. A ResourceBundle resolves them by name, extension and subdirectory,
either from a directory on disk or from an installed Python package.
"""

from __future__ import annotations

import logging
from importlib import resources
from pathlib import Path

logger = logging.getLogger(__name__)


class ResourceBundle:
    """Read-only view over a directory of bundled resources.

    Example:
        bundle = ResourceBundle(Path("resources"))
        url = bundle.find_resource("Model 2", "json", "Model.schemas")
    """

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    @classmethod
    def from_package(cls, package: str) -> ResourceBundle:
        """Create a bundle rooted at an installed package's data directory.

        Only regular (on-disk) installations are supported; zipped packages
        would need extraction first.
        """
        return cls(Path(str(resources.files(package))))

    @property
    def root(self) -> Path:
        return self._root

    def find_resource(
        self,
        name: str,
        extension: str,
        subdirectory: str | None = None,
    ) -> Path | None:
        """Find a single resource file.

        Args:
            name: Resource name without extension (may contain spaces).
            extension: File extension without the leading dot.
            subdirectory: Optional subdirectory relative to the bundle root.

        Returns:
            Path to the resource, or None if it does not exist.
        """
        base = self._root / subdirectory if subdirectory else self._root
        candidate = base / f"{name}.{extension}"
        if candidate.is_file():
            return candidate
        logger.debug(f"Resource not found: {candidate}")
        return None

    def list_resources(self, extension: str, subdirectory: str | None = None) -> list[Path]:
        """List all resources with an extension, sorted by file name.

        Returns:
            Matching files; empty if the directory does not exist.
        """
        base = self._root / subdirectory if subdirectory else self._root
        if not base.is_dir():
            return []
        return sorted(p for p in base.glob(f"*.{extension}") if p.is_file())
