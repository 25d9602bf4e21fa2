from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

from wbvm.backend.storage import MountError, MountTableError, UnmountError
from wbvm.models import MountSource
from wbvm.orchestration import VMManager, VolumeManager


class FakeMountTable:
    """Mount points map to a stack of sources; the last one is visible."""

    def __init__(self):
        self.entries: Dict[str, List[MountSource]] = {}
        self.unreadable = False

    def add(self, target, device: str, fstype: str = "btrfs") -> None:
        self.entries.setdefault(str(target), []).append(MountSource(device=device, fstype=fstype))

    def remove(self, target) -> None:
        stack = self.entries.get(str(target))
        if stack:
            stack.pop()
        if not stack:
            self.entries.pop(str(target), None)

    def find_target(self, path: Path) -> Optional[MountSource]:
        if self.unreadable:
            raise MountTableError("mount table unreadable")
        stack = self.entries.get(str(path))
        return stack[-1] if stack else None


class FakeMounter:
    """Mounts by updating the fake table. `devices` maps UUID to device path."""

    def __init__(self, table: FakeMountTable):
        self.table = table
        self.devices: Dict[str, str] = {}
        self.mount_calls: List[Tuple[str, Path]] = []
        self.umount_calls: List[Path] = []
        self.already_mounted = False
        self.umount_fails = False
        self.umount_ineffective = False

    def mount(self, source: str, target: Path, fstype: str = "auto", options: str = "relatime") -> bool:
        self.mount_calls.append((source, Path(target)))
        uuid = source[len("UUID="):] if source.startswith("UUID=") else source
        if self.already_mounted:
            return False
        if uuid not in self.devices:
            raise MountError(source, target, 32, f"mount: {target}: can't find {source}.")
        self.table.add(target, self.devices[uuid])
        return True

    def umount(self, target: Path) -> None:
        self.umount_calls.append(Path(target))
        if self.umount_fails:
            raise UnmountError(target, 32, f"umount: {target}: target is busy.")
        if not self.umount_ineffective:
            self.table.remove(target)


class FakeDeviceProbe:
    def __init__(self):
        self.uuids: Dict[str, Optional[str]] = {}

    def is_block_device(self, device: Path) -> bool:
        return str(device) in self.uuids

    def filesystem_uuid(self, device: Path) -> Optional[str]:
        return self.uuids.get(str(device))


class FakeUsageProbe:
    def __init__(self, size: int = 10 * 1024 ** 3, free: int = 4 * 1024 ** 3):
        self.size = size
        self.free = free
        self.fails = False

    def usage(self, path: Path) -> Tuple[int, int]:
        if self.fails:
            raise OSError("statvfs failed")
        return self.size, self.free


class FakeSnapshotter:
    def __init__(self):
        self.calls: List[Path] = []

    def snapshot(self, path: Path) -> Path:
        self.calls.append(Path(path))
        head = Path(path) / ".snapshots" / "head"
        head.mkdir(parents=True, exist_ok=True)
        return head


class FakeBackupTool:
    def __init__(self):
        self.calls: List[Tuple[Path, Path]] = []

    def backup(self, source: Path, destination: Path) -> None:
        self.calls.append((Path(source), Path(destination)))


class FakeServiceManager:
    def __init__(self):
        self.running = set()
        self.enabled = set()
        self.calls: List[Tuple[str, str]] = []
        self.rst = 0

    def systemctl(self, action: str, vmname: str, quiet: bool = False) -> int:
        self.calls.append((action, vmname))
        if action == "start" and self.rst == 0:
            self.running.add(vmname)
        return self.rst

    def is_running(self, vmname: str) -> bool:
        return vmname in self.running

    def is_autostart(self, vmname: str) -> bool:
        return vmname in self.enabled

    def set_autostart(self, vmname: str, on_off: bool) -> int:
        self.calls.append(("enable" if on_off else "disable", vmname))
        if self.rst == 0:
            if on_off:
                self.enabled.add(vmname)
            else:
                self.enabled.discard(vmname)
        return self.rst


class FakeGuestAgent:
    def __init__(self):
        self.addresses: Dict[str, Optional[str]] = {}

    def ipv4_address(self, socket_path: Path) -> Optional[str]:
        return self.addresses.get(str(socket_path))


@pytest.fixture
def root(tmp_path):
    vm_root = tmp_path / "vm"
    vm_root.mkdir()
    return vm_root


@pytest.fixture
def mount_table():
    return FakeMountTable()


@pytest.fixture
def mounter(mount_table):
    return FakeMounter(mount_table)


@pytest.fixture
def device_probe():
    return FakeDeviceProbe()


@pytest.fixture
def usage_probe():
    return FakeUsageProbe()


@pytest.fixture
def snapshotter():
    return FakeSnapshotter()


@pytest.fixture
def backup_tool():
    return FakeBackupTool()


@pytest.fixture
def volumes(mount_table, mounter, device_probe, usage_probe, snapshotter, backup_tool):
    return VolumeManager(
        mount_table=mount_table,
        mounter=mounter,
        device_probe=device_probe,
        usage_probe=usage_probe,
        snapshotter=snapshotter,
        backup_tool=backup_tool,
    )


@pytest.fixture
def services():
    return FakeServiceManager()


@pytest.fixture
def guest_agent():
    return FakeGuestAgent()


@pytest.fixture
def vms(volumes, services, guest_agent):
    return VMManager(volume_manager=volumes, services=services, guest_agent=guest_agent)


@pytest.fixture
def device(tmp_path, device_probe, mounter):
    """A fake block device carrying a filesystem, known to the probe and the mounter."""
    dev = tmp_path / "sdb1"
    dev.touch()
    device_probe.uuids[str(dev)] = "1111-aaaa"
    mounter.devices["1111-aaaa"] = str(dev)
    return dev


@pytest.fixture
def offline_volume(root):
    """Factory for a volume directory holding only a .uuid marker."""

    def make(name: str, uuid: str) -> Path:
        path = root / f"@{name}"
        path.mkdir()
        (path / ".uuid").write_text(uuid)
        return path

    return make
