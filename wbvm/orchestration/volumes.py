#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Volume management module for the wb VM manager.
This module maps volume names to `@<name>` directories under the VM root and
handles their association with block devices (add, remove, scan), listing,
snapshots, backups and trash cleanup.

A directory `{root}/@{name}` is a volume when it is currently a mount point or
holds a `.uuid` marker naming the filesystem it belongs to. Only mounted
volumes are resolvable as placement targets; an offline volume directory sits
on the root filesystem and must never be written into.
"""
import logging
import shutil
from pathlib import Path
from typing import Dict, Optional

from wbvm.backend.storage import (
    BackupError,
    BackupTool,
    BlkidProbe,
    BtrfsSnapshotter,
    CommandMounter,
    DeviceProbe,
    InvalidDeviceError,
    Mounter,
    MountTable,
    MountTableError,
    ProcMountTable,
    RdiffBackup,
    ReservedVolumeError,
    Snapshotter,
    StatvfsUsageProbe,
    StorageError,
    UnmountError,
    UsageProbe,
    VolumeAlreadyAssociatedError,
    VolumeAlreadyMountedError,
    VolumeNotFoundError,
)
from wbvm.models import MountSource, ScanReport, ScanResult, Volume
from wbvm.utils.validation import validate_volume_name

logger = logging.getLogger("wb")

DEFAULT_VOLUME = "default"
VOLUME_PREFIX = "@"
UUID_FILE = ".uuid"
SUBVOLUME_FILE = ".subvolume"
TRASH_DIR = ".trash"
BACKUP_LINK = ".backup"
MAX_STACKED_MOUNTS = 16


def volume_path(root: Path, name: str) -> Path:
    return Path(root) / f"{VOLUME_PREFIX}{name}"


def read_uuid(path: Path) -> Optional[str]:
    """First whitespace-delimited token of `{path}/.uuid`, None when unreadable or empty."""
    try:
        tokens = (Path(path) / UUID_FILE).read_text(encoding="utf-8").split()
    except (OSError, UnicodeDecodeError):
        return None
    return tokens[0] if tokens else None


class VolumeManager:
    """Manager for volume operations."""

    def __init__(
        self,
        mount_table: Optional[MountTable] = None,
        mounter: Optional[Mounter] = None,
        device_probe: Optional[DeviceProbe] = None,
        usage_probe: Optional[UsageProbe] = None,
        snapshotter: Optional[Snapshotter] = None,
        backup_tool: Optional[BackupTool] = None,
    ):
        self.mount_table = mount_table or ProcMountTable()
        self.mounter = mounter or CommandMounter()
        self.device_probe = device_probe or BlkidProbe()
        self.usage_probe = usage_probe or StatvfsUsageProbe()
        self.snapshotter = snapshotter or BtrfsSnapshotter()
        self.backup_tool = backup_tool or RdiffBackup()

    # -- inspection -------------------------------------------------------

    def resolve_mount(self, path: Path) -> Optional[MountSource]:
        """Device and fstype mounted on `path`, or None when it is not a mounted directory."""
        path = Path(path)
        if not path.is_dir():
            return None
        return self.mount_table.find_target(path)

    def volume_dir(self, root: Path, name: str) -> Optional[Path]:
        """Directory a VM may be placed in for volume `name`.

        `default` is the VM root itself. Any other volume resolves only while
        it is mounted; offline volumes resolve to None.
        """
        root = Path(root)
        if name == DEFAULT_VOLUME:
            return root if root.is_dir() else None
        candidate = volume_path(root, name)
        return candidate if self.resolve_mount(candidate) else None

    def get_volume(self, path: Path) -> Optional[Volume]:
        path = Path(path)
        if not path.is_dir() or not path.name.startswith(VOLUME_PREFIX):
            return None
        name = path.name[len(VOLUME_PREFIX):]
        if not name or name == DEFAULT_VOLUME:
            return None

        try:
            source = self.resolve_mount(path)
        except MountTableError as e:
            logger.warning("Treating %s as not mounted: %s", path, e)
            source = None

        if source is None:
            uuid = read_uuid(path)
            if uuid is None:
                return None
            return Volume(name=name, path=path, online=False, device_or_uuid=uuid)

        volume = Volume(name=name, path=path, online=True, device_or_uuid=source.device, fstype=source.fstype)
        try:
            volume.size, volume.free = self.usage_probe.usage(path)
        except OSError as e:
            logger.debug("statvfs failed for %s: %s", path, e)
        return volume

    def list_volumes(self, root: Path) -> Dict[str, Volume]:
        """All online and offline volumes under `root`, keyed and ordered by name."""
        root = Path(root)
        if not root.is_dir():
            return {}
        volumes: Dict[str, Volume] = {}
        for entry in sorted(root.iterdir()):
            volume = self.get_volume(entry)
            if volume is not None:
                volumes[volume.name] = volume
        return volumes

    # -- lifecycle --------------------------------------------------------

    def add(self, root: Path, name: str, device: Path) -> Path:
        """Associate the filesystem on `device` with volume `name` and mount it."""
        if name == DEFAULT_VOLUME:
            raise ReservedVolumeError("Default volume cannot be modified")
        validate_volume_name(name)
        device = Path(device)
        if not device.exists() or not self.device_probe.is_block_device(device):
            raise InvalidDeviceError(f"{device} does not exist(or is not a block device)")
        uuid = self.device_probe.filesystem_uuid(device)
        if not uuid:
            raise InvalidDeviceError(f"{device} has no UUID(not formatted?)")

        path = volume_path(root, name)
        if self.resolve_mount(path):
            raise VolumeAlreadyMountedError(f"{name} has already been mounted")
        uuid_file = path / UUID_FILE
        if uuid_file.exists():
            raise VolumeAlreadyAssociatedError(f"{name} has already been associated to a partition")

        created = not path.exists()
        path.mkdir(parents=True, exist_ok=True)
        try:
            subvolume_file = path / SUBVOLUME_FILE
            if subvolume_file.exists():
                subvolume_file.unlink()
            uuid_file.write_text(uuid, encoding="utf-8")
            logger.info("Volume %s associated with UUID=%s", name, uuid)
            if not self.mounter.mount(f"UUID={uuid}", path):
                raise StorageError(f"UUID={uuid} is already mounted; refusing to reuse it for {path}")
        except Exception:
            self._rollback_add(path, created)
            raise
        logger.info("Volume %s (UUID=%s) mounted on %s", name, uuid, path)
        return path

    def _rollback_add(self, path: Path, created: bool) -> None:
        try:
            if self.mount_table.find_target(path):
                logger.error("Not rolling back %s: it is mounted", path)
                return
        except MountTableError as e:
            logger.error("Not rolling back %s: %s", path, e)
            return
        # a pre-existing directory may hold data of its own; only the marker written here goes
        if created:
            shutil.rmtree(path, ignore_errors=True)
            logger.info("Rolled back: removed %s", path)
        else:
            (path / UUID_FILE).unlink(missing_ok=True)
            logger.info("Rolled back: removed %s", path / UUID_FILE)

    def remove(self, root: Path, name: str) -> None:
        """Unmount volume `name` if needed and delete its directory tree."""
        if name == DEFAULT_VOLUME:
            raise ReservedVolumeError("Default volume cannot be modified")
        validate_volume_name(name)
        path = volume_path(root, name)
        if not path.is_dir():
            raise VolumeNotFoundError(f"Volume {name} does not exist")
        # peel off stacked mounts; UnmountError propagates and the directory stays untouched
        for _ in range(MAX_STACKED_MOUNTS):
            if not self.resolve_mount(path):
                break
            self.mounter.umount(path)
        else:
            if self.resolve_mount(path):
                raise UnmountError(path, 0, f"still a mount point after {MAX_STACKED_MOUNTS} unmounts")
        shutil.rmtree(path)
        logger.info("Volume %s removed (%s deleted)", name, path)

    def scan(self, root: Path) -> ScanReport:
        """Mount every offline volume under `root` by its stored UUID."""
        report = ScanReport()
        root = Path(root)
        if not root.is_dir():
            return report
        for path in sorted(root.iterdir()):
            if not path.is_dir() or not path.name.startswith(VOLUME_PREFIX):
                continue
            name = path.name[len(VOLUME_PREFIX):]
            if not name or name == DEFAULT_VOLUME:
                continue
            uuid = read_uuid(path) if (path / UUID_FILE).is_file() else None
            if uuid is None:
                continue
            try:
                if self.resolve_mount(path):
                    continue
            except MountTableError as e:
                report.results.append(ScanResult(name, uuid, path, mounted=False, error=str(e)))
                continue
            try:
                if self.mounter.mount(f"UUID={uuid}", path):
                    report.results.append(ScanResult(name, uuid, path, mounted=True))
                    logger.info("Volume %s(UUID=%s) mounted on %s", name, uuid, path)
                else:
                    report.results.append(
                        ScanResult(name, uuid, path, mounted=False, error=f"UUID={uuid} is already mounted elsewhere")
                    )
            except StorageError as e:
                logger.warning("Volume %s(UUID=%s) couldn't be mounted: %s", name, uuid, e)
                report.results.append(ScanResult(name, uuid, path, mounted=False, error=str(e)))
        return report

    # -- snapshots, backups and trash --------------------------------------

    def snapshot(self, root: Path, name: str) -> Path:
        volume = self.get_volume(volume_path(root, name))
        if volume is None:
            raise VolumeNotFoundError(f"Volume {name} does not exist")
        if not volume.online:
            raise VolumeNotFoundError(f"Volume {name} is offline")
        return self.snapshotter.snapshot(volume.path)

    def backup_volume(self, volume: Volume) -> Path:
        head = self.snapshotter.snapshot(volume.path)
        logger.info("Snapshot %s created", head)
        backup_link = volume.path / BACKUP_LINK
        if not backup_link.is_symlink():
            return head
        backup_dir = backup_link.resolve()
        if not backup_dir.is_dir():
            raise BackupError(f"Backup link {backup_link} broken")
        self.backup_tool.backup(head, backup_dir)
        return head

    def backup(self, root: Path) -> bool:
        """Snapshot (and back up, where linked) every online volume. False if any failed."""
        all_success = True
        for volume in self.list_volumes(root).values():
            if not volume.online:
                continue
            try:
                self.backup_volume(volume)
            except StorageError as e:
                logger.error("Backup of volume %s failed: %s", volume.name, e)
                all_success = False
        return all_success

    def clean_volume(self, root: Path, name: str) -> bool:
        """Empty the trash of a volume. Returns False when there was no trash."""
        directory = self.volume_dir(root, name)
        if directory is None:
            raise VolumeNotFoundError(f"No such volume: {name}")
        trash = directory / TRASH_DIR
        if not trash.exists():
            return False
        shutil.rmtree(trash)
        logger.info("Trash %s cleaned", trash)
        return True

    def clean(self, root: Path, name: Optional[str] = None) -> bool:
        if name is not None:
            self.clean_volume(root, name)
            return True
        all_success = True
        for volume in self.list_volumes(root).values():
            if not volume.online:
                continue
            try:
                self.clean_volume(root, volume.name)
            except (StorageError, OSError) as e:
                logger.error("Cleaning volume %s failed: %s", volume.name, e)
                all_success = False
        return all_success
