import os
import pathlib

import pytest

import regenerate_gear_metadata as rgm

from conftest import GEAR_UUID


def test_discovers_gear_directories(tmp_path):
    gear_dir = tmp_path / GEAR_UUID
    gear_dir.mkdir()

    gears = rgm.discover_gears(tmp_path)

    assert len(gears) == 1
    gear = gears[0]
    assert gear.identifier == GEAR_UUID
    assert gear.path == gear_dir
    assert gear.owner_id == os.stat(gear_dir).st_gid


@pytest.mark.parametrize(
    "name",
    [
        "shortname1",
        "abcdefghijklmnopqrstuvw",
        "abcdefghijklmnopqrstuvw-",
        "abcdefghijklmnopqrstuvwx.old",
        ".tmp",
        "abcdefghijklmnopqrstuvwx\n",
    ],
)
def test_non_gear_directories_are_excluded(tmp_path, name):
    (tmp_path / name).mkdir()
    assert rgm.discover_gears(tmp_path) == []


def test_identifier_is_taken_from_name_suffix(tmp_path):
    (tmp_path / ("app-" + GEAR_UUID)).mkdir()
    (tmp_path / ("A1" * 16)).mkdir()

    identifiers = sorted(gear.identifier for gear in rgm.discover_gears(tmp_path))

    assert identifiers == sorted([GEAR_UUID, "A1" * 16])


def test_regular_files_are_ignored(tmp_path):
    (tmp_path / GEAR_UUID).write_text("not a gear", encoding="utf-8")
    assert rgm.discover_gears(tmp_path) == []


def test_missing_base_directory_is_fatal(tmp_path):
    with pytest.raises(rgm.ConfigurationError, match="does not exist"):
        rgm.discover_gears(tmp_path / "missing")


def test_base_directory_must_be_a_directory(tmp_path):
    base = tmp_path / "gears"
    base.write_text("", encoding="utf-8")
    with pytest.raises(rgm.ConfigurationError, match="not a directory"):
        rgm.discover_gears(base)


def test_unreadable_gear_directory_is_skipped(tmp_path, monkeypatch, caplog):
    (tmp_path / GEAR_UUID).mkdir()
    original_stat = pathlib.Path.stat

    def fake_stat(self, *args, **kwargs):
        if self.name == GEAR_UUID and not kwargs and not args:
            raise PermissionError("denied")
        return original_stat(self, *args, **kwargs)

    monkeypatch.setattr(pathlib.Path, "stat", fake_stat)
    monkeypatch.setattr(pathlib.Path, "is_dir", lambda self: True)

    caplog.set_level("WARNING")
    assert rgm.discover_gears(tmp_path) == []
    assert any("Skipping gear directory" in record.message for record in caplog.records)


def test_limits_file_path_is_derived_from_identifier():
    gear = rgm.GearRecord(path=pathlib.Path("/var/lib/openshift") / GEAR_UUID, identifier=GEAR_UUID, owner_id=1000)
    assert gear.limits_file_path() == pathlib.Path(f"/etc/security/limits.d/84-{GEAR_UUID}.conf")
