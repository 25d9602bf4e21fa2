import logging
import subprocess
from pathlib import Path
from typing import List

from .base import BackupError, BackupTool

logger = logging.getLogger("wb")


class RdiffBackup(BackupTool):
    def __init__(self, remove_older_than: str = "1W"):
        self.remove_older_than = remove_older_than

    def _run(self, cmd: List[str], what: str) -> None:
        try:
            result = subprocess.run(cmd, check=False)
        except FileNotFoundError as e:
            raise BackupError("rdiff-backup command not found") from e
        if result.returncode < 0:
            raise BackupError(f"{what} terminated")
        if result.returncode != 0:
            raise BackupError(f"{what} failed")

    def backup(self, source: Path, destination: Path) -> None:
        logger.info("Backing up snapshot %s to %s using rdiff-backup...", source, destination)
        self._run(
            [
                "rdiff-backup",
                "--preserve-numerical-ids",
                "--print-statistics",
                "--exclude",
                str(source / ".trash"),
                "--exclude",
                str(source / ".snapshots"),
                str(source),
                str(destination),
            ],
            "rdiff-backup",
        )
        self._run(
            ["rdiff-backup", "--remove-older-than", self.remove_older_than, "--force", str(destination)],
            "rdiff-backup --remove-older-than",
        )
