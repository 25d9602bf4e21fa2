"""wb: host-side manager for VM directories and the volumes that hold them."""

__version__ = "1.0.0"
