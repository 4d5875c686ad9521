import logging
import pathlib
import sys
from typing import List, Set
from unittest import mock

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import regenerate_gear_metadata as rgm


GEAR_UUID = "abcdefghijklmnopqrstuvwx"


class FakeHost:
    """In-memory passwd/group databases backed by fake groupadd/useradd runs."""

    def __init__(self) -> None:
        self.groups: Set[str] = set()
        self.users: Set[str] = set()
        self.commands: List[List[str]] = []
        self.failing: Set[str] = set()

    def getgrnam(self, name):
        if name not in self.groups:
            raise KeyError(name)
        return mock.Mock(gr_name=name)

    def getpwnam(self, name):
        if name not in self.users:
            raise KeyError(name)
        return mock.Mock(pw_name=name)

    def run(self, cmd, capture_output=True, text=True, check=False):
        self.commands.append(list(cmd))
        if cmd[0] in self.failing:
            return mock.Mock(returncode=9, stdout="", stderr=f"{cmd[0]}: failed")
        if cmd[0] == "groupadd":
            self.groups.add(cmd[-1])
        elif cmd[0] == "useradd":
            self.users.add(cmd[-1])
        return mock.Mock(returncode=0, stdout="", stderr="")

    def ran(self, executable: str) -> List[List[str]]:
        return [cmd for cmd in self.commands if cmd[0] == executable]


@pytest.fixture
def fake_host(monkeypatch):
    host = FakeHost()
    monkeypatch.setattr(rgm.grp, "getgrnam", host.getgrnam)
    monkeypatch.setattr(rgm.pwd, "getpwnam", host.getpwnam)
    monkeypatch.setattr(rgm.subprocess, "run", host.run)
    return host


@pytest.fixture
def node_root(tmp_path):
    base = tmp_path / "gears"
    base.mkdir()
    etc = tmp_path / "etc"
    (etc / "limits.d").mkdir(parents=True)
    (etc / "cgrules.conf").write_text("# cgrules\n", encoding="utf-8")
    (etc / "cgconfig.conf").write_text("mount {\n    cpu = /cgroup/cpu;\n}\n", encoding="utf-8")
    return tmp_path


@pytest.fixture
def node_config(node_root):
    etc = node_root / "etc"
    return rgm.NodeConfig(
        gear_base_dir=node_root / "gears",
        gear_gecos="OpenShift guest",
        gear_shell="/usr/bin/oo-trap-user",
        limits_dir=etc / "limits.d",
        cgrules_path=etc / "cgrules.conf",
        cgconfig_path=etc / "cgconfig.conf",
    )


@pytest.fixture(autouse=True)
def restore_root_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)
