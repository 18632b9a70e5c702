"""
Convoy Playbook Parser

Parses YAML playbooks, role definitions and task-list files into Play,
Role and Module objects.

A task is a mapping with a ``name``, optional ``with``/``and`` logic blocks
and exactly one module key:

    - name: install config
      with:
        condition: "{{ manage_config }}"
      file:
        path: /etc/app.conf
        content: "{{ config_text }}"
      and:
        notify: restart app
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import yaml

from convoy.engine.errors import ParseError
from convoy.engine.instantiate import InstantiateSpec
from convoy.modules.base import Module
from convoy.modules.registry import MODULES
from convoy.tasks.logic import PostLogicInput, PreLogicInput

logger = logging.getLogger(__name__)

ROLE_FILE = "role.yml"

TASK_KEYWORDS = {'name', 'with', 'and'}

PLAY_KEYS = {
    'name', 'groups', 'roles', 'tasks', 'handlers', 'vars', 'vars_files', 'defaults',
    'sudo', 'sudo_template', 'ssh_user', 'ssh_port', 'batch_size', 'instantiate',
}

ROLE_KEYS = {'name', 'defaults', 'dependencies', 'tasks', 'handlers'}


@dataclass
class RoleInvocation:
    """A role referenced from a play, with the vars and tags it is invoked with."""

    role: str
    vars: Dict[str, Any] = field(default_factory=dict)
    tags: List[str] = field(default_factory=list)


@dataclass
class Role:
    """A role loaded from ``<role path>/<name>/role.yml``."""

    name: str
    path: Path
    defaults: Dict[str, Any] = field(default_factory=dict)
    dependencies: List[str] = field(default_factory=list)
    tasks: List[str] = field(default_factory=list)
    handlers: List[str] = field(default_factory=list)

    def resolve_file(self, kind: str, name: str) -> Path:
        """Resolve a task or handler file under ``tasks/`` or ``handlers/``."""
        path = Path(name)
        if path.is_absolute():
            return path
        return self.path / kind / path


@dataclass
class Play:
    """Represents a single play in a playbook."""

    name: str
    groups: List[str]
    roles: List[RoleInvocation] = field(default_factory=list)
    tasks: List[Module] = field(default_factory=list)
    handlers: List[Module] = field(default_factory=list)
    vars: Dict[str, Any] = field(default_factory=dict)
    vars_files: List[str] = field(default_factory=list)
    defaults: Dict[str, Any] = field(default_factory=dict)
    sudo: Optional[str] = None
    sudo_template: Optional[str] = None
    ssh_user: Optional[str] = None
    ssh_port: Optional[int] = None
    batch_size: Optional[int] = None
    instantiate: Optional[InstantiateSpec] = None

    def __repr__(self) -> str:
        return f"Play(name={self.name!r}, groups={self.groups!r}, tasks={len(self.tasks)})"


def read_yaml(path: Path) -> Any:
    """
    Load a YAML file with ``yaml.safe_load``.

    Raises:
        ParseError: If the file is missing or is not valid YAML
    """
    if not path.is_file():
        raise ParseError("file not found", file_path=str(path))
    try:
        return yaml.safe_load(path.read_text(encoding='utf-8'))
    except yaml.YAMLError as e:
        mark = getattr(e, 'problem_mark', None)
        line = mark.line + 1 if mark is not None else None
        raise ParseError(f"YAML syntax error: {e}", file_path=str(path), line=line)


def _ensure_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _ensure_mapping(value: Any, what: str, file_path: Path) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ParseError(f"'{what}' must be a mapping, got {type(value).__name__}", file_path=str(file_path))
    return value


def parse_task(data: Any, file_path: Path) -> Module:
    """
    Parse one task mapping into its module.

    Raises:
        ParseError: If the task does not name exactly one known module
    """
    if not isinstance(data, dict):
        raise ParseError(f"task must be a mapping, got {type(data).__name__}", file_path=str(file_path))

    label = data.get('name')
    label = str(label) if label is not None else None
    module_keys = [key for key in data if key not in TASK_KEYWORDS]
    describe = f"task '{label}'" if label else "unnamed task"

    if not module_keys:
        raise ParseError(f"{describe} has no module", file_path=str(file_path))
    if len(module_keys) > 1:
        raise ParseError(
            f"{describe} names more than one module: {', '.join(module_keys)}",
            file_path=str(file_path),
        )

    module_name = module_keys[0]
    factory = MODULES.get(module_name)
    if factory is None:
        raise ParseError(f"unknown module '{module_name}' in {describe}", file_path=str(file_path))

    try:
        return factory(
            data[module_name],
            label=label,
            pre_logic=PreLogicInput.from_dict(data.get('with')),
            post_logic=PostLogicInput.from_dict(data.get('and')),
        )
    except ParseError as e:
        if e.file_path:
            raise
        raise ParseError(f"{describe}: {e.reason}", file_path=str(file_path))


def load_task_file(path: Path) -> List[Module]:
    """Load a YAML list of tasks."""
    data = read_yaml(path)
    if data is None:
        return []
    if not isinstance(data, list):
        raise ParseError("task file must contain a list of tasks", file_path=str(path))
    return [parse_task(item, path) for item in data]


def find_role(name: str, role_paths: Sequence[Path]) -> Role:
    """
    Locate and load a role by name.

    Raises:
        ParseError: If no role path contains the role
    """
    for base in role_paths:
        role_dir = Path(base) / name
        role_file = role_dir / ROLE_FILE
        if role_file.is_file():
            return load_role(role_dir, role_file)
    raise ParseError(f"role not found: {name}")


def load_role(role_dir: Path, role_file: Path) -> Role:
    data = _ensure_mapping(read_yaml(role_file), "role", role_file)
    unknown = set(data) - ROLE_KEYS
    if unknown:
        raise ParseError(f"unknown keys in role: {', '.join(sorted(unknown))}", file_path=str(role_file))
    return Role(
        name=str(data.get('name') or role_dir.name),
        path=role_dir,
        defaults=_ensure_mapping(data.get('defaults'), "defaults", role_file),
        dependencies=[str(d) for d in _ensure_list(data.get('dependencies'))],
        tasks=[str(t) for t in _ensure_list(data.get('tasks'))],
        handlers=[str(h) for h in _ensure_list(data.get('handlers'))],
    )


class PlaybookParser:
    """
    Parse a YAML playbook into Play objects.

    Role references are kept as invocations; roles are loaded during
    traversal so their dependencies resolve against the configured role
    paths.
    """

    def __init__(self, playbook_path: Union[str, Path]):
        self.playbook_path = Path(playbook_path)
        self.plays: List[Play] = []
        self._base_dir = self.playbook_path.resolve().parent

    def parse(self) -> List[Play]:
        """
        Parse the playbook file.

        Raises:
            ParseError: If the playbook is missing or malformed
        """
        data = read_yaml(self.playbook_path)
        if data is None:
            return []
        if not isinstance(data, list):
            raise ParseError("playbook must be a list of plays", file_path=str(self.playbook_path))

        for play_data in data:
            self.plays.append(self._parse_play(play_data))
        return self.plays

    def _error(self, message: str) -> ParseError:
        return ParseError(message, file_path=str(self.playbook_path))

    def _parse_play(self, data: Any) -> Play:
        if not isinstance(data, dict):
            raise self._error(f"play must be a mapping, got {type(data).__name__}")

        unknown = set(data) - PLAY_KEYS
        if unknown:
            raise self._error(f"unknown keys in play: {', '.join(sorted(unknown))}")

        name = str(data.get('name') or 'unnamed play')
        groups = [str(g) for g in _ensure_list(data.get('groups'))]
        if not groups:
            raise self._error(f"play '{name}' has no groups")

        play = Play(
            name=name,
            groups=groups,
            roles=[self._parse_role_invocation(entry) for entry in _ensure_list(data.get('roles'))],
            tasks=[parse_task(t, self.playbook_path) for t in _ensure_list(data.get('tasks'))],
            handlers=[parse_task(h, self.playbook_path) for h in _ensure_list(data.get('handlers'))],
            vars=_ensure_mapping(data.get('vars'), "vars", self.playbook_path),
            vars_files=[str(f) for f in _ensure_list(data.get('vars_files'))],
            defaults=_ensure_mapping(data.get('defaults'), "defaults", self.playbook_path),
            sudo=_optional_str(data.get('sudo')),
            sudo_template=_optional_str(data.get('sudo_template')),
            ssh_user=_optional_str(data.get('ssh_user')),
            ssh_port=self._optional_int(data, 'ssh_port'),
            batch_size=self._optional_int(data, 'batch_size'),
        )

        if data.get('instantiate') is not None:
            instantiate = _ensure_mapping(data['instantiate'], "instantiate", self.playbook_path)
            try:
                play.instantiate = InstantiateSpec.from_dict(instantiate)
            except ParseError as e:
                raise self._error(e.reason)

        if play.batch_size is not None and play.batch_size < 1:
            raise self._error(f"batch_size must be at least 1, got {play.batch_size}")

        return play

    def _parse_role_invocation(self, entry: Any) -> RoleInvocation:
        if isinstance(entry, str):
            return RoleInvocation(role=entry)
        if not isinstance(entry, dict) or not entry.get('role'):
            raise self._error("role entry must be a name or a mapping with a 'role' key")
        unknown = set(entry) - {'role', 'vars', 'tags'}
        if unknown:
            raise self._error(f"unknown keys in role entry: {', '.join(sorted(unknown))}")
        return RoleInvocation(
            role=str(entry['role']),
            vars=_ensure_mapping(entry.get('vars'), "vars", self.playbook_path),
            tags=[str(t) for t in _ensure_list(entry.get('tags'))],
        )

    def _optional_int(self, data: Dict[str, Any], key: str) -> Optional[int]:
        value = data.get(key)
        if value is None:
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            raise self._error(f"'{key}' must be an integer, got {value!r}")

    def resolve_vars_file(self, name: str) -> Path:
        """vars_files entries are relative to the playbook's directory."""
        path = Path(name)
        if path.is_absolute():
            return path
        return self._base_dir / path

    def load_vars_files(self, play: Play) -> Dict[str, Any]:
        merged: Dict[str, Any] = {}
        for name in play.vars_files:
            path = self.resolve_vars_file(name)
            merged.update(_ensure_mapping(read_yaml(path), "vars_files", path))
        return merged


def _optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)
