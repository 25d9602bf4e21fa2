import logging
import os
import subprocess
from pathlib import Path
from typing import Optional

import psutil

from wbvm.models import MountSource

from .base import MountError, Mounter, MountTable, MountTableError, UnmountError

logger = logging.getLogger("wb")

MOUNT_TIMEOUT = 60


class ProcMountTable(MountTable):
    """Live mount table of the current mount namespace, read through psutil."""

    def find_target(self, path: Path) -> Optional[MountSource]:
        candidates = {os.path.abspath(str(path)), os.path.realpath(str(path))}
        try:
            partitions = psutil.disk_partitions(all=True)
        except OSError as e:
            raise MountTableError(f"Cannot read the mount table: {e}") from e
        found = None
        # later entries are stacked on top of earlier ones
        for part in partitions:
            if part.mountpoint in candidates:
                found = MountSource(device=part.device, fstype=part.fstype)
        return found


class CommandMounter(Mounter):
    """mount(8)/umount(8) wrapper."""

    def mount(self, source: str, target: Path, fstype: str = "auto", options: str = "relatime") -> bool:
        cmd = ["mount", "-t", fstype, "-o", options, source, str(target)]
        logger.info("Mounting %s on %s", source, target)
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=False, timeout=MOUNT_TIMEOUT)
        except subprocess.TimeoutExpired as e:
            raise MountError(source, target, -1, f"timed out after {e.timeout}s") from e
        except FileNotFoundError as e:
            raise MountError(source, target, 127, "mount command not found") from e
        if result.returncode == 0:
            return True
        if "already mounted" in (result.stderr or ""):
            logger.info("%s is already mounted on %s", source, target)
            return False
        raise MountError(source, target, result.returncode, result.stderr or "")

    def umount(self, target: Path) -> None:
        logger.info("Unmounting %s", target)
        try:
            result = subprocess.run(
                ["umount", str(target)], capture_output=True, text=True, check=False, timeout=MOUNT_TIMEOUT
            )
        except subprocess.TimeoutExpired as e:
            raise UnmountError(target, -1, f"timed out after {e.timeout}s") from e
        except FileNotFoundError as e:
            raise UnmountError(target, 127, "umount command not found") from e
        if result.returncode != 0:
            raise UnmountError(target, result.returncode, result.stderr or "")
