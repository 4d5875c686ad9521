#!/usr/bin/env python3
"""Regenerate missing OS metadata for the gears hosted on a node.

Every gear lives in its own directory below the gear base directory and owns
a dedicated user and group, a pair of cgroup entries and a PAM process-limits
file.  When that metadata is lost (a node restored from backup, a provisioning
run that died half-way) the gears stop working even though their data is
intact.  This utility walks the gear directories and recreates whatever is
missing:

* the gear group and user account,
* the ``/etc/cgrules.conf`` and ``/etc/cgconfig.conf`` entries,
* ``/etc/security/limits.d/84-<uuid>.conf``.

Each fix is guarded by an existence check, so the tool can be re-run as many
times as needed.  Use ``--dry-run`` to only report what would be repaired.
"""
from __future__ import annotations

import argparse
import dataclasses
import datetime as _dt
import grp
import json
import logging
import os
import pathlib
import pwd
import re
import string
import subprocess
import sys
from abc import ABC, abstractmethod
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

try:  # Python 3.11+
    import tomllib
except ModuleNotFoundError:  # pragma: no cover - fallback for older runtimes
    import tomli as tomllib  # type: ignore[assignment]

LOG = logging.getLogger(__name__)

GEAR_NAME_PATTERN = re.compile(r"[A-Za-z0-9]{24,32}\Z")

DEFAULT_GEAR_BASE_DIR = pathlib.Path("/var/lib/openshift")
DEFAULT_LIMITS_DIR = pathlib.Path("/etc/security/limits.d")
DEFAULT_CGRULES_PATH = pathlib.Path("/etc/cgrules.conf")
DEFAULT_CGCONFIG_PATH = pathlib.Path("/etc/cgconfig.conf")
DEFAULT_CGROUP_PARENT = "openshift"
DEFAULT_CGROUP_CONTROLLERS = "cpu,cpuacct,memory,net_cls,freezer"
DEFAULT_ACCEPT_NODE_COMMAND = ("oo-accept-node",)

LIMITS_FILE_PREFIX = "84-"
LIMITS_FILE_SUFFIX = ".conf"
NPROC_SOFT_LIMIT = 250

EXIT_OK = 0
EXIT_DECLINED = 1
EXIT_FATAL = 3
EXIT_FAILURES = 5

STEP_GROUP = "group"
STEP_USER = "user"
STEP_CGROUPS = "cgroups"
STEP_LIMITS = "limits"


class RepairError(Exception):
    """Base class for errors raised while regenerating gear metadata."""


class ConfigurationError(RepairError):
    """The node configuration does not allow the run to continue."""


class CommandError(RepairError):
    """An external command exited with a non-zero status."""

    def __init__(self, cmd: Sequence[str], returncode: int, stdout: str = "", stderr: str = "") -> None:
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stdout = stdout or ""
        self.stderr = stderr or ""
        super().__init__(
            f"{' '.join(self.cmd)} exited with status {returncode}: {self.stderr.strip() or self.stdout.strip()}"
        )


@dataclasses.dataclass(frozen=True)
class NodeConfig:
    """Node settings loaded from a TOML file."""

    gear_base_dir: pathlib.Path = DEFAULT_GEAR_BASE_DIR
    gear_gecos: Optional[str] = None
    gear_shell: Optional[str] = None
    disable_password_aging: bool = True
    limits_dir: pathlib.Path = DEFAULT_LIMITS_DIR
    cgrules_path: pathlib.Path = DEFAULT_CGRULES_PATH
    cgconfig_path: pathlib.Path = DEFAULT_CGCONFIG_PATH
    cgroup_command: Optional[Tuple[str, ...]] = None
    cgroup_parent: str = DEFAULT_CGROUP_PARENT
    cgroup_controllers: str = DEFAULT_CGROUP_CONTROLLERS
    accept_node_command: Tuple[str, ...] = DEFAULT_ACCEPT_NODE_COMMAND

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> "NodeConfig":
        node = _table(data, "node")
        paths = _table(data, "paths")
        cgroups = _table(data, "cgroups")
        accept_node = _table(data, "accept_node")

        disable_aging = node.get("disable_password_aging", True)
        if not isinstance(disable_aging, bool):
            raise ConfigurationError("node.disable_password_aging must be a boolean")

        cgroup_command = cgroups.get("command")
        return cls(
            gear_base_dir=_as_path(node.get("gear_base_dir"), "node.gear_base_dir", DEFAULT_GEAR_BASE_DIR),
            gear_gecos=_as_optional_str(node.get("gear_gecos"), "node.gear_gecos"),
            gear_shell=_as_optional_str(node.get("gear_shell"), "node.gear_shell"),
            disable_password_aging=disable_aging,
            limits_dir=_as_path(paths.get("limits_dir"), "paths.limits_dir", DEFAULT_LIMITS_DIR),
            cgrules_path=_as_path(paths.get("cgrules"), "paths.cgrules", DEFAULT_CGRULES_PATH),
            cgconfig_path=_as_path(paths.get("cgconfig"), "paths.cgconfig", DEFAULT_CGCONFIG_PATH),
            cgroup_command=None if cgroup_command is None else _as_cgroup_command(cgroup_command, "cgroups.command"),
            cgroup_parent=_as_optional_str(cgroups.get("parent"), "cgroups.parent") or DEFAULT_CGROUP_PARENT,
            cgroup_controllers=(
                _as_optional_str(cgroups.get("controllers"), "cgroups.controllers") or DEFAULT_CGROUP_CONTROLLERS
            ),
            accept_node_command=_as_command(
                accept_node.get("command", list(DEFAULT_ACCEPT_NODE_COMMAND)), "accept_node.command"
            ),
        )


def _table(data: Mapping[str, object], key: str) -> Mapping[str, object]:
    section = data.get(key, {})
    if not isinstance(section, Mapping):
        raise ConfigurationError(f"[{key}] section must be a table in the configuration")
    return section


def _as_path(value: object, key: str, default: pathlib.Path) -> pathlib.Path:
    if value is None:
        return default
    if not isinstance(value, str):
        raise ConfigurationError(f"{key} must be a string")
    return pathlib.Path(value)


def _as_optional_str(value: object, key: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigurationError(f"{key} must be a string")
    return value


def _as_command(value: object, key: str) -> Tuple[str, ...]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
        raise ConfigurationError(f"{key} must be a list of strings")
    command = tuple(str(item) for item in value)
    if not command:
        raise ConfigurationError(f"{key} must not be empty")
    return command


CGROUP_COMMAND_PLACEHOLDERS = frozenset({"identifier", "uid"})


def _as_cgroup_command(value: object, key: str) -> Tuple[str, ...]:
    command = _as_command(value, key)
    formatter = string.Formatter()
    for part in command:
        try:
            fields = [field for _, field, _, _ in formatter.parse(part) if field is not None]
        except ValueError as exc:
            raise ConfigurationError(f"{key} contains a malformed placeholder in {part!r}: {exc}") from exc
        for field in fields:
            if field not in CGROUP_COMMAND_PLACEHOLDERS:
                allowed = ", ".join("{%s}" % name for name in sorted(CGROUP_COMMAND_PLACEHOLDERS))
                raise ConfigurationError(f"{key} uses unknown placeholder {{{field}}} (allowed: {allowed})")
    return command


DEFAULT_CONFIG_PATH = pathlib.Path(__file__).with_name("regenerate_gear_metadata.toml")


def load_node_config(path: Optional[pathlib.Path] = None) -> NodeConfig:
    """Load a :class:`NodeConfig` from the provided TOML file."""

    config_path = path or DEFAULT_CONFIG_PATH
    try:
        with config_path.open("rb") as fh:
            data = tomllib.load(fh)
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Configuration file not found: {config_path}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"Invalid configuration file {config_path}: {exc}") from exc
    return NodeConfig.from_mapping(data)


def ensure_root() -> None:
    if os.geteuid() != 0:
        raise PermissionError("regenerate_gear_metadata.py requires root privileges to apply fixes")


def run_command(cmd: List[str], check: bool = True) -> subprocess.CompletedProcess[str]:
    LOG.debug("Executing command: %s", " ".join(cmd))
    result = subprocess.run(cmd, capture_output=True, text=True, check=False)
    if result.stdout:
        LOG.debug("stdout: %s", result.stdout.strip())
    if result.stderr:
        LOG.debug("stderr: %s", result.stderr.strip())
    if check and result.returncode != 0:
        raise CommandError(cmd, result.returncode, result.stdout, result.stderr)
    return result


@dataclasses.dataclass(frozen=True)
class GearRecord:
    """A gear directory found on the node."""

    path: pathlib.Path
    identifier: str
    owner_id: int

    def limits_file_path(self, limits_dir: pathlib.Path = DEFAULT_LIMITS_DIR) -> pathlib.Path:
        return limits_file_path(self.identifier, limits_dir)


def discover_gears(base_dir: pathlib.Path) -> List[GearRecord]:
    """Return a record for every gear directory below ``base_dir``.

    Directories whose name does not end with a gear uuid are not gears and
    are ignored.  A directory that cannot be stat'ed is skipped with a
    warning.
    """

    if not base_dir.exists():
        raise ConfigurationError(f"Gear base directory {base_dir} does not exist")
    if not base_dir.is_dir():
        raise ConfigurationError(f"Gear base directory {base_dir} is not a directory")

    gears: List[GearRecord] = []
    for entry in base_dir.iterdir():
        if not entry.is_dir():
            continue
        match = GEAR_NAME_PATTERN.search(entry.name)
        if not match:
            LOG.debug("Skipping %s: not a gear directory", entry)
            continue
        try:
            owner_id = entry.stat().st_gid
        except OSError as exc:
            LOG.warning("Skipping gear directory %s: %s", entry, exc)
            continue
        gears.append(GearRecord(path=entry, identifier=match.group(0), owner_id=owner_id))
    LOG.debug("Discovered %d gear(s) in %s", len(gears), base_dir)
    return gears


def group_exists(identifier: str) -> bool:
    try:
        grp.getgrnam(identifier)
    except KeyError:
        return False
    return True


def user_exists(identifier: str) -> bool:
    try:
        pwd.getpwnam(identifier)
    except KeyError:
        return False
    return True


def create_group(identifier: str, owner_id: int) -> None:
    run_command(["groupadd", "-g", str(owner_id), identifier])
    LOG.info("Created group %s (gid %s)", identifier, owner_id)


def create_user(identifier: str, owner_id: int, path: pathlib.Path, config: NodeConfig) -> None:
    if not config.gear_gecos:
        raise ConfigurationError("node.gear_gecos must be configured to create gear users")
    if not config.gear_shell:
        raise ConfigurationError("node.gear_shell must be configured to create gear users")

    cmd = [
        "useradd",
        "-u",
        str(owner_id),
        "-g",
        str(owner_id),
        "-c",
        config.gear_gecos,
        "-s",
        config.gear_shell,
        "-d",
        str(path),
        "-M",
    ]
    if config.disable_password_aging:
        cmd.extend(["-K", "PASS_MAX_DAYS=-1", "-K", "PASS_MIN_DAYS=-1", "-K", "PASS_WARN_AGE=-1"])
    cmd.append(identifier)
    run_command(cmd)
    LOG.info("Created user %s (uid %s, home %s)", identifier, owner_id, path)


def _token_pattern(identifier: str) -> "re.Pattern[str]":
    return re.compile(r"(?<![A-Za-z0-9])" + re.escape(identifier) + r"(?![A-Za-z0-9])")


def _file_mentions(path: pathlib.Path, identifier: str) -> bool:
    # Identifiers are ASCII.
    contents = path.read_text(encoding="utf-8", errors="replace")
    return _token_pattern(identifier).search(contents) is not None


def cgroup_rule_entry_exists(identifier: str, path: pathlib.Path = DEFAULT_CGRULES_PATH) -> bool:
    return _file_mentions(path, identifier)


def cgroup_config_entry_exists(identifier: str, path: pathlib.Path = DEFAULT_CGCONFIG_PATH) -> bool:
    return _file_mentions(path, identifier)


class CgroupManager(ABC):
    """Creates the cgroup rule and config entries of a gear."""

    def __init__(self, config: NodeConfig) -> None:
        self.config = config

    @classmethod
    def for_config(cls, config: NodeConfig) -> "CgroupManager":
        if config.cgroup_command:
            return CommandCgroupManager(config)
        return LibcgroupManager(config)

    @abstractmethod
    def create(self, gear: GearRecord) -> None:
        """Create both cgroup entries for ``gear``; must be safe to re-run."""


class CommandCgroupManager(CgroupManager):
    """Delegates cgroup creation to an external helper command."""

    def build_command(self, gear: GearRecord) -> List[str]:
        return [
            part.format(identifier=gear.identifier, uid=gear.owner_id)
            for part in self.config.cgroup_command or ()
        ]

    def create(self, gear: GearRecord) -> None:
        run_command(self.build_command(gear))
        LOG.info("Created cgroup entries for %s", gear.identifier)


class LibcgroupManager(CgroupManager):
    """Writes libcgroup rule/config entries and instantiates the cgroup."""

    def cgroup_path(self, gear: GearRecord) -> str:
        return f"/{self.config.cgroup_parent}/{gear.identifier}"

    def render_rule(self, gear: GearRecord) -> str:
        return f"{gear.identifier}\t{self.config.cgroup_controllers}\t{self.cgroup_path(gear)}\n"

    def render_group(self, gear: GearRecord) -> str:
        lines = [
            f"group {self.config.cgroup_parent}/{gear.identifier} {{",
            "    perm {",
            "        task {",
            f"            uid = {gear.owner_id};",
            f"            gid = {gear.owner_id};",
            "        }",
            "        admin {",
            "            uid = root;",
            "            gid = root;",
            "        }",
            "    }",
        ]
        for controller in self.config.cgroup_controllers.split(","):
            controller = controller.strip()
            if controller:
                lines.append(f"    {controller} {{ }}")
        lines.append("}")
        return "\n".join(lines) + "\n"

    def create(self, gear: GearRecord) -> None:
        if not _has_entry(self.config.cgrules_path, gear.identifier):
            _append(self.config.cgrules_path, self.render_rule(gear))
            LOG.info("Added cgroup rule for %s to %s", gear.identifier, self.config.cgrules_path)
        if not _has_entry(self.config.cgconfig_path, gear.identifier):
            _append(self.config.cgconfig_path, "\n" + self.render_group(gear))
            LOG.info("Added cgroup config for %s to %s", gear.identifier, self.config.cgconfig_path)

        owner = f"{gear.owner_id}:{gear.owner_id}"
        run_command(
            [
                "cgcreate",
                "-t",
                owner,
                "-a",
                owner,
                "-g",
                f"{self.config.cgroup_controllers}:{self.cgroup_path(gear)}",
            ]
        )
        LOG.info("Created cgroup %s", self.cgroup_path(gear))


def _has_entry(path: pathlib.Path, identifier: str) -> bool:
    # A missing file simply has no entries yet.
    if not path.exists():
        return False
    return _file_mentions(path, identifier)


def _append(path: pathlib.Path, text: str) -> None:
    with path.open("a", encoding="utf-8") as fh:
        fh.write(text)


def limits_file_path(identifier: str, limits_dir: pathlib.Path = DEFAULT_LIMITS_DIR) -> pathlib.Path:
    return limits_dir / f"{LIMITS_FILE_PREFIX}{identifier}{LIMITS_FILE_SUFFIX}"


def limits_file_exists(identifier: str, limits_dir: pathlib.Path = DEFAULT_LIMITS_DIR) -> bool:
    return limits_file_path(identifier, limits_dir).exists()


def render_limits_lines(identifier: str) -> List[str]:
    return [
        f"# PAM process limits for gear {identifier}",
        "# see limits.conf(5) for details",
        "# Each line describes a limit for a user in the form:",
        "#",
        "# <domain>\t<type>\t<item>\t<value>",
        f"{identifier}\tsoft\tnproc\t{NPROC_SOFT_LIMIT}",
    ]


def create_limits_file(identifier: str, limits_dir: pathlib.Path = DEFAULT_LIMITS_DIR) -> None:
    path = limits_file_path(identifier, limits_dir)
    if path.exists():
        return
    for line in render_limits_lines(identifier):
        _append(path, line + "\n")
    LOG.info("Wrote %s", path)


@dataclasses.dataclass
class RepairReport:
    """Outcome of a repair run."""

    gears: List[str] = dataclasses.field(default_factory=list)
    fixes: List[Tuple[str, str]] = dataclasses.field(default_factory=list)
    failures: List[Tuple[str, str, str]] = dataclasses.field(default_factory=list)
    accept_node: Optional[bool] = None
    dry_run: bool = False

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    def record_failure(self, identifier: str, step: str, message: str) -> None:
        self.failures.append((identifier, step, message))

    def to_dict(self) -> Dict[str, object]:
        return {
            "dry_run": self.dry_run,
            "gears": list(self.gears),
            "fixes": [{"gear": gear, "step": step} for gear, step in self.fixes],
            "failures": [
                {"gear": gear, "step": step, "message": message} for gear, step, message in self.failures
            ],
            "accept_node": self.accept_node,
            "failure_count": self.failure_count,
        }

    def describe(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


class GearRepairer:
    """Reconcile the metadata of each gear, one step at a time."""

    def __init__(
        self,
        config: NodeConfig,
        cgroup_manager: Optional[CgroupManager] = None,
        dry_run: bool = False,
    ) -> None:
        self.config = config
        self.cgroup_manager = cgroup_manager or CgroupManager.for_config(config)
        self.dry_run = dry_run
        self.report = RepairReport(dry_run=dry_run)

    def repair(self, gears: Iterable[GearRecord]) -> RepairReport:
        for gear in gears:
            self.repair_gear(gear)
        return self.report

    def repair_gear(self, gear: GearRecord) -> None:
        LOG.debug("Checking gear %s at %s", gear.identifier, gear.path)
        self.report.gears.append(gear.identifier)
        steps: List[Tuple[str, Callable[[GearRecord], bool], Callable[[GearRecord], None]]] = [
            (STEP_GROUP, lambda g: group_exists(g.identifier), self.fix_group),
            (STEP_USER, lambda g: user_exists(g.identifier), self.fix_user),
            (STEP_CGROUPS, self.cgroups_exist, self.reconcile_cgroups),
            (STEP_LIMITS, lambda g: limits_file_exists(g.identifier, self.config.limits_dir), self.fix_limits),
        ]
        for step, check, fix in steps:
            self._run_step(gear, step, check, fix)

    def _run_step(
        self,
        gear: GearRecord,
        step: str,
        check: Callable[[GearRecord], bool],
        fix: Callable[[GearRecord], None],
    ) -> None:
        try:
            if check(gear):
                LOG.debug("Gear %s: %s is present", gear.identifier, step)
                return
            if self.dry_run:
                LOG.info("[dry-run] Would repair %s for gear %s", step, gear.identifier)
            else:
                fix(gear)
            self.report.fixes.append((gear.identifier, step))
        except CommandError as exc:
            LOG.error("Failed to repair %s for gear %s: %s", step, gear.identifier, exc)
            if exc.stdout.strip():
                LOG.error("stdout: %s", exc.stdout.strip())
            self.report.record_failure(gear.identifier, step, str(exc))
        except OSError as exc:
            LOG.error("Failed to repair %s for gear %s: %s", step, gear.identifier, exc)
            self.report.record_failure(gear.identifier, step, str(exc))

    def fix_group(self, gear: GearRecord) -> None:
        create_group(gear.identifier, gear.owner_id)

    def fix_user(self, gear: GearRecord) -> None:
        create_user(gear.identifier, gear.owner_id, gear.path, self.config)

    def cgroups_exist(self, gear: GearRecord) -> bool:
        return cgroup_rule_entry_exists(gear.identifier, self.config.cgrules_path) and cgroup_config_entry_exists(
            gear.identifier, self.config.cgconfig_path
        )

    def reconcile_cgroups(self, gear: GearRecord) -> None:
        if self.cgroups_exist(gear):
            return
        self.cgroup_manager.create(gear)

    def fix_limits(self, gear: GearRecord) -> None:
        create_limits_file(gear.identifier, self.config.limits_dir)


def run_accept_node(command: Sequence[str], quiet: bool = False) -> bool:
    """Run the node consistency checker and return ``True`` when it passes."""

    cmd = list(command)
    try:
        result = run_command(cmd, check=False)
    except FileNotFoundError:
        LOG.error("Node checker %s is not installed", cmd[0])
        return False
    except OSError as exc:
        LOG.error("Could not run node checker %s: %s", cmd[0], exc)
        return False
    output = (result.stdout or "").strip()
    if result.returncode != 0:
        LOG.error("%s reported problems (exit status %s)", cmd[0], result.returncode)
        if output:
            LOG.error("%s", output)
        if result.stderr and result.stderr.strip():
            LOG.error("%s", result.stderr.strip())
        return False
    if output and not quiet:
        LOG.info("%s", output)
    return True


def confirm(prompt: str, input_fn: Callable[[str], str] = input) -> bool:
    try:
        answer = input_fn(prompt)
    except EOFError:
        return False
    return answer.strip().lower() in {"y", "yes"}


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument(
        "-y",
        "--yes",
        action="store_true",
        help="Do not ask for confirmation before repairing the gears.",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Only report errors.",
    )
    parser.add_argument(
        "--skip-accept-node",
        action="store_true",
        help="Do not run oo-accept-node once all gears have been processed.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would be repaired without changing the node.",
    )
    parser.add_argument(
        "--config",
        type=pathlib.Path,
        help="Path to a TOML file with the node settings.",
    )
    parser.add_argument(
        "--output",
        type=pathlib.Path,
        help="Optional path to write the repair report as JSON.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase logging verbosity.",
    )
    parser.add_argument(
        "--log-file",
        type=pathlib.Path,
        help="Optional path to write logs in addition to the console output.",
    )
    parser.add_argument(
        "--log-format",
        choices=("text", "json"),
        default="text",
        help="Logging output format (default: text).",
    )
    return parser


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    return build_arg_parser().parse_args(argv)


class _JSONLogFormatter(logging.Formatter):
    """Format log records as JSON objects."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - brief output
        payload = {
            "timestamp": _dt.datetime.fromtimestamp(record.created, tz=_dt.timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def configure_logging(
    verbosity: int, quiet: bool = False, log_file: Optional[pathlib.Path] = None, log_format: str = "text"
) -> None:
    level = logging.INFO
    if quiet:
        level = logging.ERROR
    elif verbosity >= 1:
        level = logging.DEBUG
    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)

    if log_format == "json":
        formatter: logging.Formatter = _JSONLogFormatter()
    else:
        formatter = logging.Formatter("%(levelname)s: %(message)s")

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if log_file is not None:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)


def main(
    argv: Optional[Iterable[str]] = None,
    input_fn: Callable[[str], str] = input,
    cgroup_manager: Optional[CgroupManager] = None,
) -> int:
    args = parse_args(argv)
    configure_logging(args.verbose, args.quiet, args.log_file, args.log_format)

    if not args.yes and not args.dry_run:
        if not confirm("This will regenerate missing gear metadata on this node. Continue? [y/N] ", input_fn):
            LOG.warning("Aborted; no changes were made.")
            return EXIT_DECLINED

    try:
        config = load_node_config(args.config)
        if not args.dry_run:
            ensure_root()
        gears = discover_gears(config.gear_base_dir)
        repairer = GearRepairer(config, cgroup_manager=cgroup_manager, dry_run=args.dry_run)
        report = repairer.repair(gears)
    except (ConfigurationError, PermissionError) as exc:
        LOG.error("%s", exc)
        return EXIT_FATAL

    if not args.skip_accept_node and not args.dry_run:
        report.accept_node = run_accept_node(config.accept_node_command, quiet=args.quiet)
        if not report.accept_node:
            report.record_failure("", "accept-node", f"{config.accept_node_command[0]} failed")

    if args.output:
        try:
            args.output.write_text(report.describe(), encoding="utf-8")
        except OSError as exc:
            LOG.error("Failed to write repair report to %s: %s", args.output, exc)
            report.record_failure("", "report", str(exc))
        else:
            LOG.info("Wrote repair report to %s", args.output)

    verb = "would be applied" if args.dry_run else "applied"
    LOG.info(
        "Processed %d gear(s): %d fix(es) %s, %d failure(s)",
        len(report.gears),
        len(report.fixes),
        verb,
        report.failure_count,
    )
    if report.failure_count > 0:
        return EXIT_FAILURES
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
