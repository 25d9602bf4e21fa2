#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# Licensed to the Apache Software Foundation (ASF) under one
# or more contributor license agreements.  See the NOTICE file
# distributed with this work for additional information
# regarding copyright ownership.  The ASF licenses this file
# to you under the Apache License, Version 2.0 (the
# "License"); you may not use this file except in compliance
# with the License.  You may obtain a copy of the License at
#
#   http://www.apache.org/licenses/LICENSE/2.0
#
# Unless required by applicable law or agreed to in writing,
# software distributed under the License is distributed on an
# "AS IS" BASIS, WITHOUT WARRANTIES OR CONDITIONS OF ANY
# KIND, either express or implied.  See the License for the
# specific language governing permissions and limitations
# under the License.
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import typer

from wbvm.cli import CLICommands
from wbvm.config import ConfigManager
from wbvm.models import CreateOptions
from wbvm.utils.validation import fail

# Global variables
logger = logging.getLogger("wb")
logger.setLevel(logging.INFO)
_DEF_HANDLER_SET = False


def _apply_logging_from_cfg(cfg: Dict[str, Any]) -> None:
    """Set the `wb` logger level and attach its console handler from the config's logging section.

    Runs once per process; unknown level names fall back to INFO.
    """
    global _DEF_HANDLER_SET
    log_cfg = cfg.get("logging") or {}
    if _DEF_HANDLER_SET or not log_cfg:
        return
    level = logging.getLevelName(str(log_cfg.get("level", "INFO")).upper())
    logger.setLevel(level if isinstance(level, int) else logging.INFO)
    if not any(isinstance(h, logging.StreamHandler) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s wb[%(process)d] %(levelname)s: %(message)s"))
        logger.addHandler(handler)
    _DEF_HANDLER_SET = True


def _commands() -> CLICommands:
    try:
        cfg = ConfigManager().load_agent_config()
    except RuntimeError as e:
        fail(str(e))
    _apply_logging_from_cfg(cfg)
    return CLICommands(cfg)


# CLI interface
cli = typer.Typer(no_args_is_help=True)
volume_cli = typer.Typer(no_args_is_help=True, help="Manage volumes.")
cli.add_typer(volume_cli, name="volume")


@volume_cli.command("add")
def volume_add(name: str, device: Path):
    """Associate a block device with a volume name and mount it."""
    _commands().volume_add(name, device)


@volume_cli.command("remove")
def volume_remove(name: str):
    """Unmount a volume and delete its directory."""
    _commands().volume_remove(name)


@volume_cli.command("scan")
def volume_scan():
    """Mount every known but offline volume."""
    _commands().volume_scan()


@volume_cli.command("list")
def volume_list(
    names_only: bool = typer.Option(False, "--names-only", help="Print volume names only."),
    online_only: bool = typer.Option(False, "--online-only", help="Skip offline volumes."),
    as_json: bool = typer.Option(False, "--json", help="Print JSON."),
):
    """List volumes."""
    _commands().volume_list(names_only, online_only, as_json)


@volume_cli.command("snapshot")
def volume_snapshot(name: str):
    """Take a read-only snapshot of a volume."""
    _commands().volume_snapshot(name)


@volume_cli.command("backup")
def volume_backup():
    """Snapshot and back up every online volume."""
    _commands().volume_backup()


@volume_cli.command("clean")
def volume_clean(name: Optional[str] = typer.Argument(None)):
    """Empty volume trash."""
    _commands().volume_clean(name)


@cli.command()
def create(
    vmname: str,
    system_file: Optional[Path] = typer.Argument(None, exists=True, dir_okay=False),
    volume: Optional[str] = typer.Option(None, "--volume", "-v", help="Volume to create the VM in."),
    memory: Optional[int] = typer.Option(None, "--memory", "-m", min=1, help="Memory in MB."),
    cpu: Optional[int] = typer.Option(None, "--cpu", "-c", min=1, help="Number of CPUs."),
    data_partition: Optional[int] = typer.Option(None, "--data-partition", min=1, help="Data file size in GiB."),
):
    """Create a VM directory."""
    options = CreateOptions(
        volume=volume, memory=memory, cpu=cpu, data_partition=data_partition, system_file=system_file
    )
    _commands().create(vmname, options)


@cli.command()
def delete(vmname: str):
    """Move a VM to the trash."""
    _commands().delete(vmname)


@cli.command("list")
def list_vms(as_json: bool = typer.Option(False, "--json", help="Print JSON.")):
    """List VMs."""
    _commands().list(as_json)


@cli.command()
def start(vmname: str, console: bool = typer.Option(False, "--console", "-c")):
    """Start a VM."""
    _commands().start(vmname, console)


@cli.command()
def stop(
    vmname: str,
    force: bool = typer.Option(False, "--force", "-f"),
    console: bool = typer.Option(False, "--console", "-c"),
):
    """Stop a VM."""
    _commands().stop(vmname, force, console)


@cli.command()
def restart(vmname: str, force: bool = typer.Option(False, "--force", "-f")):
    """Restart a VM."""
    _commands().restart(vmname, force)


@cli.command()
def console(vmname: str):
    """Attach to the console of a running VM."""
    _commands().console(vmname)


@cli.command()
def autostart(vmname: str, on_off: Optional[str] = typer.Argument(None, metavar="[on|off]")):
    """Show or set VM autostart."""
    _commands().autostart(vmname, on_off)


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
