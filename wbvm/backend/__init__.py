"""Host-side collaborators (mount table, mount/umount, device probes, snapshot and backup tools)."""
