#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Service manager utilities for the wb VM manager.
Each VM runs as the templated systemd unit vm@<name>.service.
"""
import logging
import os
import subprocess
from typing import List, Optional

logger = logging.getLogger("wb")


def unit_name(vmname: str) -> str:
    return f"vm@{vmname}.service"


class ServiceManager:
    """Manager for systemctl operations on VM units."""

    def __init__(self, user_mode: Optional[bool] = None):
        if user_mode is None:
            user_mode = os.geteuid() != 0
        self.user_mode = user_mode

    def systemctl(self, action: str, vmname: str, quiet: bool = False) -> int:
        """Run `systemctl <action> vm@<vmname>.service` and return its exit code."""
        cmd: List[str] = ["systemctl"]
        if quiet:
            cmd.append("-q")
        cmd.append("--user" if self.user_mode else "--system")
        cmd += [action, unit_name(vmname)]
        logger.debug("Running %s", " ".join(cmd))
        try:
            result = subprocess.run(cmd, check=False)
        except FileNotFoundError as e:
            raise RuntimeError("systemctl command not found") from e
        if result.returncode < 0:
            raise RuntimeError("systemctl command terminated abnormally")
        return result.returncode

    def is_running(self, vmname: str) -> bool:
        return self.systemctl("is-active", vmname, quiet=True) == 0

    def is_autostart(self, vmname: str) -> bool:
        return self.systemctl("is-enabled", vmname, quiet=True) == 0

    def set_autostart(self, vmname: str, on_off: bool) -> int:
        return self.systemctl("enable" if on_off else "disable", vmname)
