#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
VM placement module for the wb VM manager.
A VM directory is either a real directory right under the VM root or a
symlink `{root}/{vm} -> @{volume}/{vm}` into a mounted volume. The symlink is
re-validated against the live volume state every time it is resolved.
"""
import logging
import os
from pathlib import Path

from wbvm.backend.storage import InconsistentStateError, VMNotFoundError
from wbvm.models import BackingLocation, DirectBacking, IndirectedBacking

from .volumes import VOLUME_PREFIX, VolumeManager

logger = logging.getLogger("wb")


class PlacementResolver:
    """Resolve a VM name to the directory that really holds its files."""

    def __init__(self, volume_manager: VolumeManager):
        self.volume_manager = volume_manager

    def resolve(self, root: Path, vmname: str) -> BackingLocation:
        root = Path(root)
        vm_dir = root / vmname
        if not vm_dir.is_symlink():
            if not vm_dir.is_dir():
                raise VMNotFoundError(f"{vmname} does not exist")
            return DirectBacking(vm_dir)

        target = Path(os.readlink(vm_dir))
        real_dir = target if target.is_absolute() else vm_dir.parent / target
        volume_dir = real_dir.parent
        if not volume_dir.name.startswith(VOLUME_PREFIX):
            raise InconsistentStateError(f"{volume_dir} is not a volume path")
        volume_name = volume_dir.name[len(VOLUME_PREFIX):]

        expected = self.volume_manager.volume_dir(root, volume_name)
        if expected is None:
            raise InconsistentStateError(
                f"Symlink {vm_dir} points into volume {volume_name}, which does not exist or is offline"
            )
        if expected != volume_dir:
            raise InconsistentStateError(
                f"Symlink {vm_dir}(points {real_dir}) does not point VM dir right under volume"
            )
        if not real_dir.is_dir():
            raise InconsistentStateError(f"Symlink {vm_dir} is dangling (points {real_dir})")
        return IndirectedBacking(real_path=real_dir, volume=volume_name)
