#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Utilities module for the wb VM manager.
This module contains common utility functions used across the application.
"""
import json
import re
from typing import Any

import typer

from wbvm.backend.storage import InvalidNameError

_VOLUME_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
_VM_NAME_CHARS_RE = re.compile(r"^[A-Za-z0-9-]+$")


def fail(msg: str) -> None:
    """Print an error on stderr and exit with code 1."""
    typer.echo(msg, err=True)
    raise typer.Exit(code=1)


def succeed(data: Any) -> None:
    """Print JSON data and exit with code 0."""
    typer.echo(json.dumps(data, indent=2))
    raise typer.Exit(code=0)


def validate_volume_name(name: str) -> None:
    """Validate a volume name. Raise InvalidNameError on error."""
    if not _VOLUME_NAME_RE.match(name or ""):
        raise InvalidNameError(
            f"Invalid volume name '{name}'. Use A-Z, a-z, 0-9, '_', '.' and '-', starting with a letter or digit"
        )


def validate_vm_name(vmname: str) -> None:
    """Check that a VM name is usable as an RFC952/RFC1123 hostname."""
    if not vmname:
        raise InvalidNameError("VM name must not be empty")
    if len(vmname) > 63:
        raise InvalidNameError("VM name must be 63 characters or less")
    if vmname.startswith("-") or vmname.endswith("-"):
        raise InvalidNameError("VM name must not start or end with '-'")
    if "--" in vmname:
        raise InvalidNameError("VM name must not contain consecutive '-'")
    if not _VM_NAME_CHARS_RE.match(vmname):
        raise InvalidNameError("VM name must contain only alphanumeric characters and '-'")
    if vmname.isdigit():
        raise InvalidNameError("VM name must not be all digits")


def mem_mib(mem_bytes: int) -> int:
    """Convert a byte value to whole MiB."""
    return int(mem_bytes) // 1048576


def human_readable(size: int, k: float = 1024.0) -> str:
    """Format a byte count as e.g. '1.5G' (K is the smallest unit)."""
    s = size / k
    unit = "K"
    for next_unit in ("M", "G", "T", "P"):
        if s < k:
            break
        s /= k
        unit = next_unit
    return f"{s:.1f}{unit}"
