#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Configuration management module for the wb VM manager.
This module handles config file loading and resolution of the VM root.
"""
import json
import logging
import os
import pwd
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger("wb")

DEFAULT_CONFIG_PATH = "/etc/wb/config.json"
SYSTEM_VM_ROOT = Path("/var/vm")


def is_root_user() -> bool:
    return os.geteuid() == 0


def user_home_dir() -> Path:
    home = os.environ.get("HOME")
    if home:
        return Path(home)
    return Path(pwd.getpwuid(os.getuid()).pw_dir)


class ConfigManager:
    """Manager for configuration operations."""

    def __init__(self, agent_cfg: Optional[Dict[str, Any]] = None):
        self.agent_cfg = agent_cfg or {}

    def load_agent_config(self) -> Dict[str, Any]:
        """Load the JSON config named by WB_CONFIG (default /etc/wb/config.json).
        A missing file yields the defaults; a file that cannot be parsed is fatal.
        Recognized keys:
        - vm_root: overrides /var/vm (root) or ~/vm (other users)
        - logging.level
        - qga_timeout: seconds to wait for each guest agent while listing VMs
        - backup.remove_older_than: rdiff-backup retention (default 1W)
        """
        cfg: Dict[str, Any] = {
            "logging": {},
            "qga_timeout": float(os.environ.get("WB_QGA_TIMEOUT", "0.5")),
            "backup": {"remove_older_than": "1W"},
        }
        cfg_path = Path(os.environ.get("WB_CONFIG", DEFAULT_CONFIG_PATH))
        if cfg_path.exists():
            with cfg_path.open("r", encoding="utf-8") as f:
                try:
                    file_cfg = json.load(f)
                except json.JSONDecodeError as e:
                    raise RuntimeError(f"Invalid JSON in WB_CONFIG='{cfg_path}': {e}") from e
            if not isinstance(file_cfg, dict):
                raise RuntimeError(f"WB_CONFIG='{cfg_path}' must contain a JSON object")
            for key, value in file_cfg.items():
                if key == "backup" and isinstance(value, dict):
                    cfg["backup"].update(value)
                elif key == "qga_timeout":
                    try:
                        cfg["qga_timeout"] = float(value)
                    except (TypeError, ValueError):
                        logger.warning("Ignoring invalid qga_timeout %r", value)
                else:
                    cfg[key] = value
        if not isinstance(cfg.get("logging"), dict):
            cfg["logging"] = {}
        self.agent_cfg = cfg
        return cfg

    def vm_root(self) -> Path:
        """Directory holding VM directories and `@volume` directories."""
        override = self.agent_cfg.get("vm_root")
        if isinstance(override, str) and override.strip():
            return Path(override)
        return SYSTEM_VM_ROOT if is_root_user() else user_home_dir() / "vm"
