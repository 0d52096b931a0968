"""
Particle Script Source Providers

The compiler reads imported files through a FileSystem so that editors and
tests can serve source text without touching the disk.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Union


class FileSystem(ABC):
    """Supplies source text for import statements."""

    @abstractmethod
    def read(self, path: str) -> Optional[str]:
        """Return the text of `path`, or None if it does not exist."""
        pass


class DiskFileSystem(FileSystem):
    """Reads files relative to a root directory."""

    def __init__(self, root: Union[str, Path] = "."):
        self.root = Path(root)

    def read(self, path: str) -> Optional[str]:
        full_path = self.root / path
        if not full_path.is_file():
            return None
        return full_path.read_text(encoding='utf-8')


class MemoryFileSystem(FileSystem):
    """Serves files from a dict of path -> source text."""

    def __init__(self, files: Optional[Dict[str, str]] = None):
        self.files = dict(files or {})

    def read(self, path: str) -> Optional[str]:
        return self.files.get(path)
