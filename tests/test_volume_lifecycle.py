import pytest

from wbvm.backend.storage import (
    BackupError,
    InvalidDeviceError,
    InvalidNameError,
    MountError,
    ReservedVolumeError,
    StorageError,
    UnmountError,
    VolumeAlreadyAssociatedError,
    VolumeAlreadyMountedError,
    VolumeNotFoundError,
)


class TestAdd:
    def test_add_mounts_by_uuid(self, volumes, root, device, mounter):
        path = volumes.add(root, "data", device)

        assert path == root / "@data"
        assert (path / ".uuid").read_text() == "1111-aaaa"
        assert mounter.mount_calls == [("UUID=1111-aaaa", root / "@data")]
        assert volumes.volume_dir(root, "data") == path

    def test_add_removes_stale_subvolume_marker(self, volumes, root, device):
        (root / "@data").mkdir()
        (root / "@data" / ".subvolume").write_text("")

        volumes.add(root, "data", device)
        assert not (root / "@data" / ".subvolume").exists()

    def test_add_default_is_reserved(self, volumes, root, device):
        with pytest.raises(ReservedVolumeError):
            volumes.add(root, "default", device)
        assert not (root / "@default").exists()

    @pytest.mark.parametrize("name", ["", "../etc", "a/b", "-x", ".hidden"])
    def test_add_invalid_name(self, volumes, root, device, name):
        with pytest.raises(InvalidNameError):
            volumes.add(root, name, device)

    def test_add_missing_device(self, volumes, root, tmp_path):
        with pytest.raises(InvalidDeviceError):
            volumes.add(root, "data", tmp_path / "nodev")
        assert not (root / "@data").exists()

    def test_add_regular_file_is_not_a_device(self, volumes, root, tmp_path):
        not_a_device = tmp_path / "file"
        not_a_device.touch()
        with pytest.raises(InvalidDeviceError):
            volumes.add(root, "data", not_a_device)

    def test_add_unformatted_device(self, volumes, root, device, device_probe):
        device_probe.uuids[str(device)] = None
        with pytest.raises(InvalidDeviceError, match="no UUID"):
            volumes.add(root, "data", device)
        assert not (root / "@data").exists()

    def test_second_add_of_online_volume(self, volumes, root, device):
        volumes.add(root, "data", device)
        with pytest.raises(VolumeAlreadyMountedError):
            volumes.add(root, "data", device)

    def test_second_add_of_offline_volume(self, volumes, root, device, offline_volume, mounter):
        offline_volume("data", "1111-aaaa")
        with pytest.raises(VolumeAlreadyAssociatedError):
            volumes.add(root, "data", device)
        assert mounter.mount_calls == []
        assert (root / "@data" / ".uuid").read_text() == "1111-aaaa"

    def test_mount_failure_removes_created_directory(self, volumes, root, device, mounter):
        del mounter.devices["1111-aaaa"]
        with pytest.raises(MountError):
            volumes.add(root, "data", device)
        assert not (root / "@data").exists()

    def test_mount_failure_keeps_existing_directory(self, volumes, root, device, mounter):
        (root / "@data").mkdir()
        (root / "@data" / "keep").write_text("x")
        del mounter.devices["1111-aaaa"]

        with pytest.raises(MountError):
            volumes.add(root, "data", device)
        assert (root / "@data" / "keep").read_text() == "x"
        assert not (root / "@data" / ".uuid").exists()

    def test_already_mounted_source_is_rolled_back(self, volumes, root, device, mounter):
        mounter.already_mounted = True
        with pytest.raises(StorageError):
            volumes.add(root, "data", device)
        assert not (root / "@data").exists()


class TestRemove:
    def test_remove_online_volume(self, volumes, root, device, mounter):
        volumes.add(root, "data", device)
        (root / "@data" / "vm1").mkdir()

        volumes.remove(root, "data")
        assert mounter.umount_calls == [root / "@data"]
        assert not (root / "@data").exists()

    def test_remove_offline_volume(self, volumes, root, offline_volume, mounter):
        offline_volume("data", "1234")
        volumes.remove(root, "data")
        assert mounter.umount_calls == []
        assert not (root / "@data").exists()

    def test_remove_keeps_everything_when_unmount_fails(self, volumes, root, device, mounter):
        volumes.add(root, "data", device)
        (root / "@data" / "vm1").mkdir()
        (root / "@data" / "vm1" / "system").write_text("image")
        mounter.umount_fails = True

        with pytest.raises(UnmountError):
            volumes.remove(root, "data")
        assert (root / "@data" / ".uuid").read_text() == "1111-aaaa"
        assert (root / "@data" / "vm1" / "system").read_text() == "image"
        assert volumes.volume_dir(root, "data") == root / "@data"

    def test_remove_unmounts_every_stacked_mount(self, volumes, root, device, mounter, mount_table):
        volumes.add(root, "data", device)
        mount_table.add(root / "@data", "/dev/sdc1", "ext4")
        (root / "@data" / "payload").write_text("x")

        volumes.remove(root, "data")
        assert mounter.umount_calls == [root / "@data", root / "@data"]
        assert mount_table.find_target(root / "@data") is None
        assert not (root / "@data").exists()

    def test_remove_keeps_directory_that_stays_mounted(self, volumes, root, device, mounter, mount_table):
        volumes.add(root, "data", device)
        (root / "@data" / "payload").write_text("x")
        mounter.umount_ineffective = True

        with pytest.raises(UnmountError, match="still a mount point"):
            volumes.remove(root, "data")
        assert (root / "@data" / "payload").read_text() == "x"
        assert mount_table.find_target(root / "@data") is not None

    def test_remove_default_is_reserved(self, volumes, root):
        with pytest.raises(ReservedVolumeError):
            volumes.remove(root, "default")
        assert root.is_dir()

    def test_remove_unknown_volume(self, volumes, root):
        with pytest.raises(VolumeNotFoundError):
            volumes.remove(root, "nothing")


class TestScan:
    def test_partial_failure(self, volumes, root, device, offline_volume):
        offline_volume("good", "1111-aaaa")
        offline_volume("bad", "dead-beef")

        report = volumes.scan(root)
        outcome = {r.name: r.mounted for r in report.results}
        assert outcome == {"bad": False, "good": True}
        assert report.ok is False
        assert [r.error is not None for r in report.results] == [True, False]
        assert volumes.volume_dir(root, "good") == root / "@good"
        assert volumes.volume_dir(root, "bad") is None

    def test_skips_mounted_and_unmarked_directories(self, volumes, root, mount_table, mounter):
        (root / "@online").mkdir()
        (root / "@online" / ".uuid").write_text("1111-aaaa")
        mount_table.add(root / "@online", "/dev/sdb1")
        (root / "@bare").mkdir()
        (root / "@default").mkdir()
        (root / "@default" / ".uuid").write_text("2222")

        report = volumes.scan(root)
        assert report.results == []
        assert report.ok is True
        assert mounter.mount_calls == []

    def test_unreadable_mount_table_is_reported(self, volumes, root, offline_volume, mount_table):
        offline_volume("data", "1111-aaaa")
        mount_table.unreadable = True

        report = volumes.scan(root)
        assert len(report.results) == 1
        assert report.results[0].mounted is False
        assert "unreadable" in report.results[0].error


class TestSnapshotBackupClean:
    def test_snapshot_offline_volume(self, volumes, root, offline_volume, snapshotter):
        offline_volume("data", "1234")
        with pytest.raises(VolumeNotFoundError):
            volumes.snapshot(root, "data")
        assert snapshotter.calls == []

    def test_snapshot_online_volume(self, volumes, root, device, snapshotter):
        volumes.add(root, "data", device)
        head = volumes.snapshot(root, "data")
        assert head == root / "@data" / ".snapshots" / "head"
        assert snapshotter.calls == [root / "@data"]

    def test_backup_follows_backup_link(self, volumes, root, device, tmp_path, backup_tool, offline_volume):
        volumes.add(root, "data", device)
        offline_volume("cold", "9999")
        target = tmp_path / "backups" / "data"
        target.mkdir(parents=True)
        (root / "@data" / ".backup").symlink_to(target)

        assert volumes.backup(root) is True
        assert backup_tool.calls == [(root / "@data" / ".snapshots" / "head", target.resolve())]

    def test_backup_without_link_only_snapshots(self, volumes, root, device, snapshotter, backup_tool):
        volumes.add(root, "data", device)
        assert volumes.backup(root) is True
        assert snapshotter.calls == [root / "@data"]
        assert backup_tool.calls == []

    def test_broken_backup_link(self, volumes, root, device, tmp_path, backup_tool):
        volumes.add(root, "data", device)
        (root / "@data" / ".backup").symlink_to(tmp_path / "missing")

        volume = volumes.list_volumes(root)["data"]
        with pytest.raises(BackupError):
            volumes.backup_volume(volume)
        assert volumes.backup(root) is False
        assert backup_tool.calls == []

    def test_clean_volume_trash(self, volumes, root, device):
        volumes.add(root, "data", device)
        (root / "@data" / ".trash" / "vm1.x").mkdir(parents=True)

        assert volumes.clean(root) is True
        assert not (root / "@data" / ".trash").exists()

    def test_clean_default_volume(self, volumes, root):
        (root / ".trash" / "vm1.x").mkdir(parents=True)
        assert volumes.clean_volume(root, "default") is True
        assert not (root / ".trash").exists()
        assert volumes.clean_volume(root, "default") is False

    def test_clean_offline_volume(self, volumes, root, offline_volume):
        offline_volume("data", "1234")
        with pytest.raises(VolumeNotFoundError):
            volumes.clean(root, "data")
