"""
Download destination management
"""

import os
import shutil
from pathlib import Path
from typing import Optional, Union
import logging

logger = logging.getLogger(__name__)

# Storage configuration
DOWNLOADS_DIR = Path(os.getenv("DOWNLOADS_DIR", "."))


class StorageManager:
    """Resolves where downloaded files land. Never creates directories."""

    def __init__(self, downloads_dir: Optional[Union[str, Path]] = None):
        self.downloads_dir = Path(downloads_dir) if downloads_dir is not None else DOWNLOADS_DIR
        logger.info(f"Storage at {self.downloads_dir.resolve()}")

    def get_download_path(self, filename: str) -> Path:
        """Get full path for a download file, keeping only the base name"""
        name = Path(filename.replace("\\", "/")).name
        if not name or name in (".", ".."):
            raise ValueError(f"Unusable filename: {filename!r}")
        return self.downloads_dir / name

    def file_exists(self, filename: str) -> bool:
        """Check if file exists"""
        path = self.get_download_path(filename)
        return path.exists() and path.is_file()

    def get_file_size(self, filename: str) -> Optional[int]:
        """Get file size in bytes"""
        path = self.get_download_path(filename)
        if path.exists():
            return path.stat().st_size
        return None

    def get_disk_usage(self) -> float:
        """Get disk usage percentage"""
        try:
            stat = shutil.disk_usage(self.downloads_dir)
            return (stat.used / stat.total) * 100
        except Exception as e:
            logger.error(f"Failed to get disk usage: {e}")
            return 0.0

    def get_total_size(self) -> int:
        """Get total size of files directly inside the downloads directory"""
        if not self.downloads_dir.exists():
            return 0
        return sum(f.stat().st_size for f in self.downloads_dir.iterdir() if f.is_file())


# Global storage manager instance
storage = StorageManager()
