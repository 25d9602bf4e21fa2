# Orchestration module for volume, placement and VM management
from .placement import PlacementResolver
from .vm_manager import VMManager
from .volumes import VolumeManager

__all__ = ["PlacementResolver", "VMManager", "VolumeManager"]
