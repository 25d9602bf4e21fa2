"""
Storage collaborators for the wb VM manager.
This package provides the interfaces the volume and placement logic depends on
together with their host implementations:
- Live mount table (psutil) and mount/umount (mount(8))
- Block device UUID probing (blkid) and filesystem usage (statvfs)
- btrfs snapshots and rdiff-backup backups
"""

from .base import (
    BackupError,
    BackupTool,
    DeviceProbe,
    InconsistentStateError,
    InvalidDeviceError,
    InvalidNameError,
    MountError,
    Mounter,
    MountTable,
    MountTableError,
    PreconditionError,
    ReservedVolumeError,
    SnapshotError,
    Snapshotter,
    StorageError,
    UnmountError,
    UsageProbe,
    VMNotFoundError,
    VMStateError,
    VolumeAlreadyAssociatedError,
    VolumeAlreadyMountedError,
    VolumeNotFoundError,
)
from .btrfs import BtrfsSnapshotter
from .devices import BlkidProbe, StatvfsUsageProbe
from .mounts import CommandMounter, ProcMountTable
from .rdiff_backup import RdiffBackup

__all__ = [
    "BackupError",
    "BackupTool",
    "BlkidProbe",
    "BtrfsSnapshotter",
    "CommandMounter",
    "DeviceProbe",
    "InconsistentStateError",
    "InvalidDeviceError",
    "InvalidNameError",
    "MountError",
    "Mounter",
    "MountTable",
    "MountTableError",
    "PreconditionError",
    "ProcMountTable",
    "RdiffBackup",
    "ReservedVolumeError",
    "SnapshotError",
    "Snapshotter",
    "StatvfsUsageProbe",
    "StorageError",
    "UnmountError",
    "UsageProbe",
    "VMNotFoundError",
    "VMStateError",
    "VolumeAlreadyAssociatedError",
    "VolumeAlreadyMountedError",
    "VolumeNotFoundError",
]
