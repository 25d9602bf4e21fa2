import logging
import os
import subprocess
from datetime import datetime
from pathlib import Path
from typing import Optional

from .base import SnapshotError, Snapshotter

logger = logging.getLogger("wb")

WEEKDAYS = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")


def _btrfs(*args: str) -> subprocess.CompletedProcess:
    try:
        return subprocess.run(["btrfs", *args], capture_output=True, text=True, check=False)
    except FileNotFoundError as e:
        raise SnapshotError("btrfs command not found") from e


def is_subvolume(path: Path) -> bool:
    return _btrfs("subvolume", "show", str(path)).returncode == 0


def subvolume_creation_time(path: Path) -> Optional[datetime]:
    """Parse the 'Creation time:' line of `btrfs subvolume show` as local time."""
    result = _btrfs("subvolume", "show", str(path))
    if result.returncode != 0:
        raise SnapshotError(f"Inspecting subvolume {path} failed: {result.stderr.strip()}")
    for line in result.stdout.splitlines():
        key, _, value = line.strip().partition(":")
        if key.strip() != "Creation time":
            continue
        try:
            return datetime.strptime(value.strip(), "%Y-%m-%d %H:%M:%S %z").astimezone()
        except ValueError:
            return None
    return None


def weekday_name(when: datetime) -> str:
    return WEEKDAYS[(when.weekday() + 1) % 7]


class BtrfsSnapshotter(Snapshotter):
    """Read-only snapshots kept as .snapshots/head plus one per weekday."""

    def snapshot(self, path: Path) -> Path:
        if not is_subvolume(path):
            raise SnapshotError(f"{path} is offline or not a btrfs volume")
        snapshots = path / ".snapshots"
        head = snapshots / "head"

        if is_subvolume(head):
            created = subvolume_creation_time(head) or datetime.fromtimestamp(head.stat().st_mtime)
            dow = snapshots / weekday_name(created)
            if is_subvolume(dow):
                result = _btrfs("subvolume", "delete", str(dow))
                if result.returncode != 0:
                    raise SnapshotError(f"Deleting snapshot {dow} failed: {result.stderr.strip()}")
                logger.info("Snapshot %s deleted", dow)
            head.rename(dow)
            logger.info("Snapshot %s renamed to %s", head, dow)

        snapshots.mkdir(exist_ok=True)
        result = _btrfs("subvolume", "snapshot", "-r", str(path), str(head))
        if result.returncode != 0:
            raise SnapshotError(f"Creating readonly snapshot {head} failed: {result.stderr.strip()}")
        os.sync()
        return head
