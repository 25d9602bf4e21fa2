"""
Helper probes for block devices and mounted filesystems.
"""

import logging
import os
import stat
import subprocess
from pathlib import Path
from typing import Optional, Tuple

from .base import DeviceProbe, StorageError, UsageProbe

logger = logging.getLogger("wb")


def _is_block_device(p: Path) -> bool:
    try:
        st = os.stat(str(p))
        return stat.S_ISBLK(st.st_mode)
    except OSError:
        return False


class BlkidProbe(DeviceProbe):
    def is_block_device(self, device: Path) -> bool:
        return _is_block_device(device)

    def filesystem_uuid(self, device: Path) -> Optional[str]:
        """Read the filesystem UUID of a partition, bypassing the blkid cache."""
        try:
            result = subprocess.run(
                ["blkid", "-c", "/dev/null", "-s", "UUID", "-o", "value", str(device)],
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as e:
            raise StorageError("blkid command not found") from e
        # blkid exits with 2 when the requested tag is not present
        if result.returncode == 2:
            return None
        if result.returncode != 0:
            raise StorageError(f"blkid failed on {device}: {(result.stderr or '').strip()}")
        uuid = result.stdout.strip()
        return uuid or None


class StatvfsUsageProbe(UsageProbe):
    def usage(self, path: Path) -> Tuple[int, int]:
        vfs = os.statvfs(str(path))
        blocksize = vfs.f_frsize or vfs.f_bsize
        return blocksize * vfs.f_blocks, blocksize * vfs.f_bfree
