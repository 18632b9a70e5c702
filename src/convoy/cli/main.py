"""
Main CLI entrypoint for convoy.

Usage:
    convoy --version
    convoy ssh -p site.yml -i inventory/
    convoy local -p site.yml
    convoy check-ssh -p site.yml -i inventory/ --limit-groups web
"""

import argparse
import getpass
import platform
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from convoy import __version__
from convoy.config import ConnectionMode, RunConfig
from convoy.engine.context import DEFAULT_SSH_PORT
from convoy.engine.errors import ConfigurationError, ExitCode
from convoy.engine.scheduler import DEFAULT_THREADS
from convoy.logging import configure_logging

# CLI mode -> (connection mode, check mode)
MODES = {
    "ssh": (ConnectionMode.SSH, False),
    "local": (ConnectionMode.LOCAL, False),
    "simulate": (ConnectionMode.SIMULATE, False),
    "chroot": (ConnectionMode.CHROOT, False),
    "check-ssh": (ConnectionMode.SSH, True),
    "check-local": (ConnectionMode.LOCAL, True),
}


def get_version_string() -> str:
    """Generate a detailed version string."""
    python_version = platform.python_version()
    os_info = f"{platform.system()} {platform.release()}"
    return (
        f"convoy {__version__}\n"
        f"  python: {python_version}\n"
        f"  platform: {os_info}"
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for convoy."""
    parser = argparse.ArgumentParser(
        prog="convoy",
        description="Apply playbooks to a fleet of hosts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  convoy ssh -p site.yml -i inventory/
  convoy check-ssh -p site.yml -i inventory/ --limit-hosts web1
  convoy local -p workstation.yml -e env=dev
  convoy ssh -p deploy.yml -i inventory/ --async --threads 10
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=get_version_string(),
    )

    parser.add_argument(
        "mode",
        choices=sorted(MODES),
        help="Connection mode; check-* modes report changes without making them",
    )

    parser.add_argument(
        "-p", "--playbook",
        dest="playbooks",
        action="append",
        default=[],
        help="Playbook file (can be repeated)",
    )

    parser.add_argument(
        "-i", "--inventory",
        dest="inventories",
        action="append",
        default=[],
        help="Inventory directory (can be repeated)",
    )

    parser.add_argument(
        "--roles",
        dest="roles",
        action="append",
        default=[],
        help="Additional role search path (can be repeated)",
    )

    parser.add_argument(
        "--limit-groups",
        dest="limit_groups",
        default=None,
        help="Only hosts in these groups (comma separated)",
    )

    parser.add_argument(
        "--limit-hosts",
        dest="limit_hosts",
        default=None,
        help="Only these hosts (comma separated)",
    )

    parser.add_argument(
        "--batch-size",
        dest="batch_size",
        type=int,
        default=None,
        help="Configure this many hosts at a time",
    )

    parser.add_argument(
        "--threads",
        dest="threads",
        type=int,
        default=DEFAULT_THREADS,
        help=f"Number of hosts worked on in parallel (default: {DEFAULT_THREADS})",
    )

    parser.add_argument(
        "--tags",
        dest="tags",
        default=None,
        help="Only run tasks with these tags (comma separated)",
    )

    parser.add_argument(
        "-u", "--user",
        dest="user",
        default=None,
        help="Default SSH user (default: $USER)",
    )

    parser.add_argument(
        "--port",
        dest="port",
        type=int,
        default=DEFAULT_SSH_PORT,
        help=f"Default SSH port (default: {DEFAULT_SSH_PORT})",
    )

    parser.add_argument(
        "--sudo",
        dest="sudo",
        default=None,
        help="Run commands as this user via sudo",
    )

    parser.add_argument(
        "--forward-agent",
        action="store_true",
        help="Forward the local SSH agent",
    )

    parser.add_argument(
        "--ask-login-password",
        action="store_true",
        help="Prompt for an SSH login password",
    )

    parser.add_argument(
        "--private-key",
        dest="private_key",
        default=None,
        help="SSH private key file",
    )

    parser.add_argument(
        "--chroot-root",
        dest="chroot_root",
        default=None,
        help="Root directory for chroot mode",
    )

    parser.add_argument(
        "--async",
        dest="async_mode",
        action="store_true",
        help="Run each host through the task list independently",
    )

    parser.add_argument(
        "-e", "--extra-vars",
        dest="extra_vars",
        action="append",
        default=[],
        help="Extra variables as key=value, @file.yml or inline YAML (can be repeated)",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v, -vv, -vvv)",
    )

    return parser


def split_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_extra_vars(items: List[str]) -> Dict[str, Any]:
    """
    Parse ``-e`` values.

    Raises:
        ConfigurationError: If a value is neither key=value, @file nor a YAML mapping
    """
    result: Dict[str, Any] = {}
    for item in items:
        item = item.strip()

        if item.startswith('@'):
            path = Path(item[1:])
            if not path.is_file():
                raise ConfigurationError(f"extra vars file not found: {path}")
            try:
                data = yaml.safe_load(path.read_text(encoding='utf-8'))
            except yaml.YAMLError as e:
                raise ConfigurationError(f"invalid YAML in extra vars file {path}: {e}")
            if data is None:
                continue
            if not isinstance(data, dict):
                raise ConfigurationError(f"extra vars file must contain a mapping: {path}")
            result.update(data)
            continue

        if not item.startswith('{') and '=' in item:
            key, _, value = item.partition('=')
            key = key.strip()
            if not key:
                raise ConfigurationError(f"invalid extra var: {item!r}")
            try:
                result[key] = yaml.safe_load(value) if value.strip() else ""
            except yaml.YAMLError:
                result[key] = value
            continue

        try:
            data = yaml.safe_load(item)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"invalid extra vars {item!r}: {e}")
        if not isinstance(data, dict):
            raise ConfigurationError(f"extra vars must be key=value, @file or a mapping: {item!r}")
        result.update(data)

    return result


def build_config(parsed: argparse.Namespace) -> RunConfig:
    mode, check_mode = MODES[parsed.mode]
    login_password = None
    if parsed.ask_login_password:
        login_password = getpass.getpass("SSH login password: ")

    role_paths = [Path(p) for p in parsed.roles]
    config = RunConfig(
        playbook_paths=[Path(p) for p in parsed.playbooks],
        inventory_paths=[Path(p) for p in parsed.inventories],
        mode=mode,
        check_mode=check_mode,
        async_mode=parsed.async_mode,
        limit_groups=split_list(parsed.limit_groups),
        limit_hosts=split_list(parsed.limit_hosts),
        batch_size=parsed.batch_size,
        threads=parsed.threads,
        tags=split_list(parsed.tags),
        ssh_user=parsed.user,
        ssh_port=parsed.port,
        sudo=parsed.sudo,
        forward_agent=parsed.forward_agent,
        login_password=login_password,
        private_key_file=parsed.private_key,
        chroot_root=parsed.chroot_root,
        extra_vars=parse_extra_vars(parsed.extra_vars),
        verbosity=parsed.verbose,
    )
    config.role_paths.extend(role_paths)
    config.validate()
    return config


def main(args: Optional[List[str]] = None) -> int:
    """Main entrypoint for convoy CLI."""
    parser = create_parser()
    parsed = parser.parse_args(args)
    configure_logging(parsed.verbose)

    try:
        config = build_config(parsed)
    except ConfigurationError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return int(ExitCode.PARSE_ERROR)

    from convoy.engine.runner import PlaybookRunner

    return PlaybookRunner(config).run()


if __name__ == "__main__":
    sys.exit(main())
