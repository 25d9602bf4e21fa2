#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
VM Manager module for the wb VM manager.
This module handles VM directory creation and deletion, the VM listing and
service control (start, stop, restart, console, autostart).
"""
import configparser
import json
import logging
import os
import shutil
import subprocess
import uuid
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import TypeAdapter, ValidationError

from wbvm.backend.storage import (
    InconsistentStateError,
    StorageError,
    VMNotFoundError,
    VMStateError,
    VolumeNotFoundError,
)
from wbvm.models import CreateOptions, IndirectedBacking, RunningVM, VMEntry
from wbvm.utils.qga import GuestAgentClient
from wbvm.utils.systemd import ServiceManager
from wbvm.utils.validation import mem_mib, validate_vm_name

from .placement import PlacementResolver
from .volumes import DEFAULT_VOLUME, TRASH_DIR, VOLUME_PREFIX, VolumeManager

logger = logging.getLogger("wb")

VM_INI = "vm.ini"
GIB = 1024 * 1024 * 1024

_RUNNING_VMS = TypeAdapter(List[RunningVM])


def read_vm_ini(vm_dir: Path) -> Dict[str, int]:
    """Parse the section-less key=value vm.ini, keeping positive integer values only."""
    ini_path = vm_dir / VM_INI
    if not ini_path.exists():
        return {}
    parser = configparser.ConfigParser()
    try:
        parser.read_string("[vm]\n" + ini_path.read_text(encoding="utf-8"))
    except (OSError, configparser.Error) as e:
        logger.warning("Unable to read %s: %s", ini_path, e)
        return {}
    values = {}
    for key in ("cpu", "memory"):
        try:
            value = parser.getint("vm", key, fallback=0)
        except ValueError:
            value = 0
        if value > 0:
            values[key] = value
    return values


def create_allocated_nocow_file(path: Path, size: int) -> None:
    """Preallocate `size` bytes at `path`, asking for copy-on-write to be disabled first."""
    fd = os.open(str(path), os.O_CREAT | os.O_RDWR, 0o600)
    os.close(fd)
    # the attribute only applies to empty files; filesystems without COW reject it
    try:
        subprocess.run(["chattr", "+C", str(path)], capture_output=True, check=False)
    except FileNotFoundError:
        logger.debug("chattr not found; %s keeps copy-on-write", path)
    fd = os.open(str(path), os.O_RDWR)
    try:
        os.posix_fallocate(fd, 0, size)
    except OSError as e:
        raise StorageError(f"fallocate() failed. Error creating data file. (err={e.strerror})") from e
    finally:
        os.close(fd)


class VMManager:
    """Manager for VM directory and service operations."""

    def __init__(
        self,
        volume_manager: Optional[VolumeManager] = None,
        services: Optional[ServiceManager] = None,
        guest_agent: Optional[GuestAgentClient] = None,
    ):
        self.volume_manager = volume_manager or VolumeManager()
        self.placement = PlacementResolver(self.volume_manager)
        self.services = services or ServiceManager()
        self.guest_agent = guest_agent or GuestAgentClient()

    # -- VM directories -----------------------------------------------------

    def create(self, root: Path, vmname: str, options: Optional[CreateOptions] = None) -> Path:
        """Create the VM directory, inside a volume when one is requested. Returns the real directory."""
        options = options or CreateOptions()
        validate_vm_name(vmname)
        root = Path(root)
        vm_dir = root / vmname
        if os.path.lexists(vm_dir):
            raise VMStateError(f"{vmname} already exists")

        symlink: Optional[Path] = None
        if options.volume is None or options.volume == DEFAULT_VOLUME:
            real_vm_dir = vm_dir
        else:
            volume_dir = self.volume_manager.volume_dir(root, options.volume)
            if volume_dir is None:
                raise VolumeNotFoundError(f"Volume {options.volume} does not exist or offline")
            real_vm_dir = volume_dir / vmname
            if os.path.lexists(real_vm_dir):
                raise VMStateError(f"{real_vm_dir} already exists")
            symlink = Path(f"{VOLUME_PREFIX}{options.volume}") / vmname

        try:
            (real_vm_dir / "fs").mkdir(parents=True)
            if options.system_file is not None:
                shutil.copyfile(options.system_file, real_vm_dir / "system")
            lines = []
            if options.memory:
                lines.append(f"memory={options.memory}\n")
            if options.cpu:
                lines.append(f"cpu={options.cpu}\n")
            (real_vm_dir / VM_INI).write_text("".join(lines), encoding="utf-8")
            if options.data_partition:
                create_allocated_nocow_file(real_vm_dir / "data", options.data_partition * GIB)
            if symlink is not None:
                vm_dir.symlink_to(symlink, target_is_directory=True)
        except Exception:
            shutil.rmtree(real_vm_dir, ignore_errors=True)
            raise
        logger.info("VM %s created in %s", vmname, real_vm_dir)
        return real_vm_dir

    def delete(self, root: Path, vmname: str) -> Path:
        """Move the VM's real directory into the trash of its volume (or of the root)."""
        validate_vm_name(vmname)
        root = Path(root)
        backing = self.placement.resolve(root, vmname)
        if self.services.is_running(vmname):
            raise VMStateError(f"{vmname} is running")

        self.services.set_autostart(vmname, False)

        vm_dir = root / vmname
        if isinstance(backing, IndirectedBacking):
            real_vm_dir = backing.real_path
            trash_dir = backing.real_path.parent / TRASH_DIR
            vm_dir.unlink()
        else:
            real_vm_dir = backing.path
            trash_dir = root / TRASH_DIR

        trash_dir.mkdir(parents=True, exist_ok=True)
        destination = trash_dir / f"{vmname}.{uuid.uuid4()}"
        real_vm_dir.rename(destination)
        logger.info("VM %s moved to %s", vmname, destination)
        return destination

    # -- listing --------------------------------------------------------------

    def running_vms(self) -> List[RunningVM]:
        """Running VMs as reported by `vm show`."""
        try:
            result = subprocess.run(["vm", "show"], capture_output=True, text=True, check=False)
        except FileNotFoundError as e:
            raise StorageError("vm command not found") from e
        if result.returncode != 0:
            raise StorageError("subprocess exited with error")
        try:
            return _RUNNING_VMS.validate_python(json.loads(result.stdout or "[]"))
        except (json.JSONDecodeError, ValidationError) as e:
            raise StorageError(f"Unexpected output from vm show: {e}") from e

    def _volume_of(self, root: Path, vmname: str) -> Optional[str]:
        try:
            backing = self.placement.resolve(root, vmname)
        except (InconsistentStateError, VMNotFoundError) as e:
            logger.warning("%s", e)
            return None
        return backing.volume if isinstance(backing, IndirectedBacking) else None

    def list_vms(self, root: Path) -> List[VMEntry]:
        root = Path(root)
        vms: Dict[str, VMEntry] = {}
        if root.is_dir():
            for d in sorted(root.iterdir()):
                name = d.name
                if name.startswith(VOLUME_PREFIX) or name.startswith("."):
                    continue
                if not d.is_dir():
                    continue
                ini = read_vm_ini(d)
                vms[name] = VMEntry(
                    name=name,
                    cpu=ini.get("cpu"),
                    memory=ini.get("memory"),
                    volume=self._volume_of(root, name),
                    autostart=self.services.is_autostart(name),
                )

        queries = {}
        running = self.running_vms()
        with ThreadPoolExecutor(max_workers=max(1, len(running))) as pool:
            for vm in running:
                entry = vms.setdefault(vm.name, VMEntry(name=vm.name))
                entry.running = True
                entry.cpu = vm.cpus
                entry.memory = mem_mib(vm.memory)
                if vm.qga:
                    queries[vm.name] = pool.submit(self.guest_agent.ipv4_address, Path(vm.qga))
            for vmname, future in queries.items():
                vms[vmname].ip_address = future.result()

        return [vms[name] for name in sorted(vms)]

    # -- service control -------------------------------------------------------

    def _attach_console(self, vmname: str) -> int:
        return subprocess.run(["vm", "console", vmname], check=False).returncode

    def start(self, vmname: str, console: bool = False) -> int:
        if self.services.is_running(vmname):
            raise VMStateError(f"{vmname} is already running.")
        rst = self.services.systemctl("start", vmname)
        if rst == 0 and console:
            return self._attach_console(vmname)
        return rst

    def stop(self, vmname: str, force: bool = False, console: bool = False) -> int:
        if not self.services.is_running(vmname):
            raise VMStateError(f"{vmname} is not running.")
        cmd = ["vm", "stop"]
        if force:
            cmd.append("-f")
        if console:
            cmd.append("-c")
        cmd.append(vmname)
        return subprocess.run(cmd, check=False).returncode

    def restart(self, vmname: str, force: bool = False) -> int:
        if force:
            subprocess.run(["vm", "stop", "-f", vmname], check=False)
        return self.services.systemctl("restart", vmname)

    def console(self, vmname: str) -> int:
        if not self.services.is_running(vmname):
            raise VMStateError(f"{vmname} is not running.")
        return self._attach_console(vmname)

    def autostart(self, vmname: str, on_off: Optional[bool] = None) -> Optional[bool]:
        """Query autostart when `on_off` is None, otherwise enable/disable it.

        Returns the current state when querying; raises StorageError when systemctl fails to change it.
        """
        if on_off is None:
            return self.services.is_autostart(vmname)
        rst = self.services.set_autostart(vmname, on_off)
        if rst != 0:
            raise StorageError(f"systemctl {'enable' if on_off else 'disable'} failed for {vmname} (exit {rst})")
        return on_off
