#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
CLI commands module for the wb VM manager.
This module contains the command-line interface commands for volume and VM operations.
"""
import dataclasses
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import typer
from rich.console import Console
from rich.table import Table

from wbvm.backend.storage import RdiffBackup, StorageError
from wbvm.config import ConfigManager
from wbvm.config.manager import is_root_user
from wbvm.models import CreateOptions, Volume, VMEntry
from wbvm.orchestration import VMManager, VolumeManager
from wbvm.utils.qga import GuestAgentClient
from wbvm.utils.validation import fail, human_readable, succeed

logger = logging.getLogger("wb")

VOLUME_COLUMNS = [
    ("ONLINE", "right"),
    ("NAME", "left"),
    ("PATH", "left"),
    ("DEVICE | UUID", "left"),
    ("FSTYPE", "left"),
    ("SIZE", "right"),
    ("FREE", "right"),
]
VM_COLUMNS = [
    ("RUNNING", "right"),
    ("NAME", "left"),
    ("VOLUME", "left"),
    ("AUTOSTART", "left"),
    ("CPU", "right"),
    ("MEMORY", "right"),
    ("IP ADDRESS", "left"),
]


def _cell(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, bool):
        return "*" if value else ""
    return str(value)


def _yes_no(value: Optional[bool]) -> str:
    if value is None:
        return "-"
    return "yes" if value else "no"


def _render_table(columns: Sequence[Tuple[str, str]], rows: List[Sequence[str]]) -> None:
    """Render rows under (header, justify) columns on stdout."""
    table = Table(box=None, pad_edge=False, header_style="bold")
    for header, justify in columns:
        table.add_column(header, justify=justify, no_wrap=True)
    for row in rows:
        table.add_row(*row)
    Console(markup=False, highlight=False).print(table)


class CLICommands:
    """CLI commands handler."""

    def __init__(
        self,
        agent_cfg: Optional[Dict[str, Any]] = None,
        volume_manager: Optional[VolumeManager] = None,
        vm_manager: Optional[VMManager] = None,
    ):
        cfg = agent_cfg
        if cfg is None:
            cfg = ConfigManager().load_agent_config()
        self.config_manager = ConfigManager(cfg)
        self.root = self.config_manager.vm_root()
        backup_cfg = cfg.get("backup") or {}
        self.volume_manager = volume_manager or VolumeManager(
            backup_tool=RdiffBackup(remove_older_than=backup_cfg.get("remove_older_than", "1W"))
        )
        self.vm_manager = vm_manager or VMManager(
            volume_manager=self.volume_manager,
            guest_agent=GuestAgentClient(timeout=float(cfg.get("qga_timeout", 0.5))),
        )

    # -- volumes ------------------------------------------------------------

    def volume_add(self, name: str, device: Path):
        """Associate a block device with a volume name and mount it."""
        try:
            path = self.volume_manager.add(self.root, name, device)
        except (StorageError, OSError) as e:
            fail(f"Volume add failed: {e}")
        typer.echo(f"Volume {name} added and mounted on {path}")

    def volume_remove(self, name: str):
        """Unmount a volume and delete its directory."""
        try:
            self.volume_manager.remove(self.root, name)
        except (StorageError, OSError) as e:
            fail(f"Volume remove failed: {e}")
        typer.echo(f"Volume {name} removed")

    def volume_scan(self):
        """Mount every offline volume. Failures are reported, never fatal."""
        try:
            report = self.volume_manager.scan(self.root)
        except (StorageError, OSError) as e:
            typer.echo(f"Volume scan failed: {e}", err=True)
            return
        for result in report.results:
            if result.mounted:
                typer.echo(f"Volume {result.name}(UUID={result.uuid}) mounted on {result.path}")
            else:
                typer.echo(f"Volume {result.name}(UUID={result.uuid}) couldn't be mounted: {result.error}", err=True)

    def volume_list(self, names_only: bool = False, online_only: bool = False, as_json: bool = False):
        """List volumes under the VM root."""
        try:
            volumes = self.volume_manager.list_volumes(self.root)
        except (StorageError, OSError) as e:
            fail(f"Volume list failed: {e}")
        selected: List[Volume] = [v for v in volumes.values() if v.online or not online_only]
        if names_only:
            for volume in selected:
                typer.echo(volume.name)
            return
        if as_json:
            succeed([self._volume_dict(v) for v in selected])
        rows = [
            [
                _cell(v.online),
                v.name,
                str(v.path),
                v.device_or_uuid,
                _cell(v.fstype),
                human_readable(v.size) if v.size is not None else "-",
                human_readable(v.free) if v.free is not None else "-",
            ]
            for v in selected
        ]
        _render_table(VOLUME_COLUMNS, rows)

    @staticmethod
    def _volume_dict(volume: Volume) -> Dict[str, Any]:
        data = dataclasses.asdict(volume)
        data["path"] = str(volume.path)
        return data

    def volume_snapshot(self, name: str):
        """Take a read-only snapshot of an online volume."""
        try:
            head = self.volume_manager.snapshot(self.root, name)
        except (StorageError, OSError) as e:
            fail(f"Snapshot failed: {e}")
        typer.echo(f"Snapshot {head} created")

    def volume_backup(self):
        """Snapshot every online volume and run rdiff-backup where a .backup link exists."""
        if not self.volume_manager.backup(self.root):
            fail("Backup failed for one or more volumes")

    def volume_clean(self, name: Optional[str] = None):
        """Empty the trash of one volume, or of every online volume."""
        try:
            ok = self.volume_manager.clean(self.root, name)
        except (StorageError, OSError) as e:
            fail(f"Clean failed: {e}")
        if not ok:
            fail("Clean failed for one or more volumes")

    # -- VMs ------------------------------------------------------------------

    def create(self, vmname: str, options: CreateOptions):
        """Create a VM directory."""
        if options.volume is not None and not is_root_user():
            logger.warning("--volume is only honored for root; creating %s in %s", vmname, self.root)
            options = dataclasses.replace(options, volume=None)
        try:
            real_dir = self.vm_manager.create(self.root, vmname, options)
        except (StorageError, OSError) as e:
            fail(f"VM creation failed: {e}")
        typer.echo(f"VM {vmname} created in {real_dir}")

    def delete(self, vmname: str):
        """Move a stopped VM to the trash."""
        try:
            destination = self.vm_manager.delete(self.root, vmname)
        except (StorageError, OSError, RuntimeError) as e:
            fail(f"VM delete failed: {e}")
        typer.echo(f"VM {vmname} moved to {destination}")

    def list(self, as_json: bool = False):
        """List VMs with their live state."""
        try:
            vms = self.vm_manager.list_vms(self.root)
        except (StorageError, OSError, RuntimeError) as e:
            fail(f"VM list failed: {e}")
        if as_json:
            succeed([dataclasses.asdict(vm) for vm in vms])
        _render_table(VM_COLUMNS, [self._vm_row(vm) for vm in vms])

    @staticmethod
    def _vm_row(vm: VMEntry) -> List[str]:
        return [
            _cell(vm.running),
            vm.name,
            _cell(vm.volume),
            _yes_no(vm.autostart),
            _cell(vm.cpu),
            _cell(vm.memory),
            _cell(vm.ip_address),
        ]

    def _exit_with(self, rst: int):
        if rst != 0:
            raise typer.Exit(code=rst)

    def start(self, vmname: str, console: bool = False):
        try:
            self._exit_with(self.vm_manager.start(vmname, console))
        except (StorageError, RuntimeError) as e:
            fail(str(e))

    def stop(self, vmname: str, force: bool = False, console: bool = False):
        try:
            self._exit_with(self.vm_manager.stop(vmname, force, console))
        except (StorageError, RuntimeError) as e:
            fail(str(e))

    def restart(self, vmname: str, force: bool = False):
        try:
            self._exit_with(self.vm_manager.restart(vmname, force))
        except (StorageError, RuntimeError) as e:
            fail(str(e))

    def console(self, vmname: str):
        try:
            self._exit_with(self.vm_manager.console(vmname))
        except (StorageError, RuntimeError) as e:
            fail(str(e))

    def autostart(self, vmname: str, on_off: Optional[str] = None):
        """Show or change whether a VM starts at boot."""
        if on_off is not None and on_off not in ("on", "off"):
            fail("autostart value must be 'on' or 'off'")
        try:
            state = self.vm_manager.autostart(vmname, None if on_off is None else on_off == "on")
        except (StorageError, RuntimeError) as e:
            fail(str(e))
        typer.echo("on" if state else "off")
