"""
Inventory Loader

Loads inventory directories into an Inventory:

    <inventory>/groups/<group>        hosts: [...], subgroups: [...]
    <inventory>/group_vars/<group>    mapping of variables
    <inventory>/host_vars/<host>      mapping of variables

File names may carry a .yml/.yaml suffix. A path that is a single file is
read as one groups/ entry named after the file stem.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, Tuple, Union

import yaml

from convoy.engine.errors import InventoryError
from convoy.inventory.inventory import Inventory

logger = logging.getLogger(__name__)

YAML_SUFFIXES = ('.yml', '.yaml')


def load_inventory(inventory: Inventory, paths: Iterable[Union[str, Path]]) -> Inventory:
    """
    Load one or more inventory sources into ``inventory``.

    Args:
        inventory: Inventory to populate
        paths: Inventory directories or single group files

    Returns:
        The same inventory, for chaining
    """
    for raw_path in paths:
        path = Path(raw_path)
        if path.is_dir():
            _load_directory(inventory, path)
        elif path.is_file():
            _load_group_file(inventory, _entry_name(path), path)
        else:
            raise InventoryError("inventory path does not exist", file_path=str(path))
    return inventory


def _load_directory(inventory: Inventory, path: Path) -> None:
    groups_dir = path / "groups"
    if not groups_dir.is_dir():
        raise InventoryError("inventory directory has no groups/ subdirectory", file_path=str(path))

    for name, file_path in _iter_entries(groups_dir):
        _load_group_file(inventory, name, file_path)

    # Variable files may only refer to groups/hosts defined above
    for name, file_path in _iter_entries(path / "group_vars"):
        if not inventory.has_group(name):
            raise InventoryError(f"group_vars file for unknown group {name}", file_path=str(file_path))
        inventory.store_group_variables(name, _load_mapping(file_path))

    for name, file_path in _iter_entries(path / "host_vars"):
        if not inventory.has_host(name):
            logger.warning("skipping host_vars for unknown host %s (%s)", name, file_path)
            continue
        variables = _load_mapping(file_path)
        inventory.store_host_variables(name, variables)
        provision = variables.get("provision")
        if provision is not None:
            if not isinstance(provision, dict) or "type" not in provision:
                raise InventoryError("'provision' must be a mapping with a 'type'", file_path=str(file_path))
            inventory.get_host(name).provision = dict(provision)


def _load_group_file(inventory: Inventory, group_name: str, file_path: Path) -> None:
    data = _load_mapping(file_path)
    inventory.store_group(group_name)

    for host_name in _string_list(data.get("hosts"), "hosts", file_path):
        inventory.store_host(group_name, host_name)

    for subgroup in _string_list(data.get("subgroups"), "subgroups", file_path):
        if subgroup == group_name:
            raise InventoryError(f"group {group_name} lists itself as a subgroup", file_path=str(file_path))
        inventory.store_subgroup(group_name, subgroup)

    unknown = set(data) - {"hosts", "subgroups"}
    if unknown:
        raise InventoryError(
            f"unexpected keys in group file: {', '.join(sorted(unknown))}",
            file_path=str(file_path),
        )


def _iter_entries(directory: Path) -> Iterator[Tuple[str, Path]]:
    if not directory.is_dir():
        return
    for item in sorted(directory.iterdir()):
        if item.is_file() and not item.name.startswith('.'):
            yield _entry_name(item), item


def _entry_name(path: Path) -> str:
    if path.suffix in YAML_SUFFIXES:
        return path.stem
    return path.name


def _load_mapping(file_path: Path) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(file_path.read_text(encoding='utf-8'))
    except yaml.YAMLError as e:
        raise InventoryError(f"YAML syntax error: {e}", file_path=str(file_path))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InventoryError("expected a YAML mapping", file_path=str(file_path))
    return data


def _string_list(value: Any, key: str, file_path: Path) -> list:
    if value is None:
        return []
    if not isinstance(value, list):
        raise InventoryError(f"'{key}' must be a list", file_path=str(file_path))
    return [str(item) for item in value]
