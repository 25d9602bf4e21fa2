from __future__ import annotations

from pathlib import Path
from typing import Optional, Protocol, Tuple, runtime_checkable

from wbvm.models import MountSource


class StorageError(Exception):
    """Generic volume / VM storage error."""

    pass


class PreconditionError(StorageError):
    """An operation was refused before anything was modified."""

    pass


class ReservedVolumeError(PreconditionError):
    pass


class InvalidNameError(PreconditionError):
    pass


class InvalidDeviceError(PreconditionError):
    """Device is missing, not a block special file, or carries no filesystem UUID."""

    pass


class VolumeAlreadyMountedError(PreconditionError):
    pass


class VolumeAlreadyAssociatedError(PreconditionError):
    pass


class VolumeNotFoundError(PreconditionError):
    pass


class VMNotFoundError(PreconditionError):
    pass


class VMStateError(PreconditionError):
    """VM is running (or not running, or already exists) when the operation needs otherwise."""

    pass


class InconsistentStateError(StorageError):
    """On-disk indirection disagrees with the live volume state. Never repaired automatically."""

    pass


class MountTableError(StorageError):
    """The live mount table could not be read at all."""

    pass


class MountError(StorageError):
    def __init__(self, source: str, target: Path, returncode: int, stderr: str = ""):
        self.source = source
        self.target = target
        self.returncode = returncode
        self.stderr = stderr
        detail = f": {stderr.strip()}" if stderr and stderr.strip() else ""
        super().__init__(f"Failed to mount {source} on {target} (exit {returncode}){detail}")


class UnmountError(StorageError):
    def __init__(self, target: Path, returncode: int, stderr: str = ""):
        self.target = target
        self.returncode = returncode
        self.stderr = stderr
        detail = f": {stderr.strip()}" if stderr and stderr.strip() else ""
        super().__init__(f"Unable to unmount {target} (exit {returncode}){detail}")


class SnapshotError(StorageError):
    pass


class BackupError(StorageError):
    pass


@runtime_checkable
class MountTable(Protocol):
    """Read-only view of the live mount table.
    Semantics:
      - find_target(): the entry whose target is `path`; the most recently
        established one when several are stacked. None when not a mount point.
      - raise MountTableError when the table itself cannot be read.
    """

    def find_target(self, path: Path) -> Optional[MountSource]:
        ...


@runtime_checkable
class Mounter(Protocol):
    """Mount/unmount primitive.
    Semantics:
      - mount(): True when mounted, False when the kernel reports the source
        already mounted there; raise MountError for any other failure.
      - umount(): raise UnmountError on failure (e.g. target busy).
    """

    def mount(self, source: str, target: Path, fstype: str = "auto", options: str = "relatime") -> bool:
        ...

    def umount(self, target: Path) -> None:
        ...


@runtime_checkable
class DeviceProbe(Protocol):
    def is_block_device(self, device: Path) -> bool:
        ...

    def filesystem_uuid(self, device: Path) -> Optional[str]:
        ...


@runtime_checkable
class UsageProbe(Protocol):
    def usage(self, path: Path) -> Tuple[int, int]:
        """Return (size, free) in bytes; raise OSError on failure."""
        ...


@runtime_checkable
class Snapshotter(Protocol):
    def snapshot(self, path: Path) -> Path:
        """Take a read-only snapshot of the mounted volume at `path`, returning its location."""
        ...


@runtime_checkable
class BackupTool(Protocol):
    def backup(self, source: Path, destination: Path) -> None:
        ...
