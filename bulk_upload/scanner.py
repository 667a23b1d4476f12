"""
Module for listing the files of an upload directory.
"""
import logging
from pathlib import Path
from typing import List, Union

from .exceptions import DirectoryNotFound
from .models import UploadJob

logger = logging.getLogger(__name__)


class FileScanner:
    """Lists files under an upload root as upload jobs."""

    def __init__(self, pattern: str = "*", recursive: bool = False):
        """Initialize the file scanner.

        Args:
            pattern: Glob pattern files must match
            recursive: Whether to descend into subdirectories
        """
        self.pattern = pattern
        self.recursive = recursive

    def list_files(self, root: Union[str, Path]) -> List[UploadJob]:
        """Scan a folder for files matching the pattern.

        Args:
            root: Path to the folder to scan

        Returns:
            List of upload jobs, sorted by file name. Empty if nothing matched.

        Raises:
            DirectoryNotFound: If the folder does not exist or is not a directory
        """
        folder = Path(root)
        if not folder.exists():
            raise DirectoryNotFound(f"Upload folder does not exist: {folder}")
        if not folder.is_dir():
            raise DirectoryNotFound(f"{folder} is not a directory")

        paths = folder.rglob(self.pattern) if self.recursive else folder.glob(self.pattern)
        jobs = []
        for path in paths:
            try:
                if not path.is_file():
                    continue
                size_bytes = path.stat().st_size
            except OSError as e:
                # Left for the upload task to report as a local I/O failure
                logger.warning(f"Cannot stat {path}: {e}")
                size_bytes = 0
            jobs.append(UploadJob(
                file_name=self.get_relative_name(path, folder),
                source_path=path,
                size_bytes=size_bytes
            ))

        jobs.sort(key=lambda job: job.file_name)
        logger.debug(f"Found {len(jobs)} file(s) in {folder}")
        return jobs

    @staticmethod
    def get_relative_name(file_path: Path, base_path: Path) -> str:
        """Get the object name of a file: its path relative to the root, '/'-separated.

        Args:
            file_path: Path to the file
            base_path: Upload root

        Returns:
            Relative POSIX-style name
        """
        try:
            return file_path.relative_to(base_path).as_posix()
        except ValueError:
            logger.error(f"File {file_path} is not relative to {base_path}")
            return file_path.name
