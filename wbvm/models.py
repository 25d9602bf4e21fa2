#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Data models for the wb VM manager.
This module contains the data classes used throughout the application.
"""
import dataclasses
from pathlib import Path
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


@dataclasses.dataclass(frozen=True)
class MountSource:
    """Live mount table entry for a mount point."""

    device: str
    fstype: str


@dataclasses.dataclass
class Volume:
    """A volume found under the VM root, online (mounted) or offline (known by UUID)."""

    name: str
    path: Path
    online: bool
    device_or_uuid: str
    fstype: Optional[str] = None
    size: Optional[int] = None
    free: Optional[int] = None


@dataclasses.dataclass(frozen=True)
class DirectBacking:
    """VM directory lives right under the VM root."""

    path: Path


@dataclasses.dataclass(frozen=True)
class IndirectedBacking:
    """VM directory is a symlink into a mounted volume."""

    real_path: Path
    volume: str


BackingLocation = Union[DirectBacking, IndirectedBacking]


@dataclasses.dataclass
class ScanResult:
    name: str
    uuid: str
    path: Path
    mounted: bool
    error: Optional[str] = None


@dataclasses.dataclass
class ScanReport:
    results: List[ScanResult] = dataclasses.field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(r.mounted for r in self.results)


@dataclasses.dataclass
class CreateOptions:
    """Options for creating a VM directory."""

    volume: Optional[str] = None
    memory: Optional[int] = None
    cpu: Optional[int] = None
    data_partition: Optional[int] = None
    system_file: Optional[Path] = None


@dataclasses.dataclass
class VMEntry:
    """One row of the VM listing."""

    name: str
    running: bool = False
    cpu: Optional[int] = None
    memory: Optional[int] = None
    volume: Optional[str] = None
    autostart: Optional[bool] = None
    ip_address: Optional[str] = None


class RunningVM(BaseModel):
    """Entry of the JSON array printed by `vm show`."""

    name: str
    cpus: int
    memory: int
    qga: Optional[str] = None


class GuestIpAddress(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ip_address: str = Field(alias="ip-address")
    ip_address_type: str = Field(alias="ip-address-type")


class GuestInterface(BaseModel):
    """Interface reported by the guest agent's guest-network-get-interfaces."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    ip_addresses: List[GuestIpAddress] = Field(default_factory=list, alias="ip-addresses")
