"""
Convoy Instantiate

Play-level ``instantiate`` block: generate a fleet of hosts from a name
pattern before the play's groups are validated.

    instantiate:
      pattern: "fleet-{01..10}.lon.example.net"
      nodes: [pve1, pve2]
      provision:
        type: noop
        memory: 2048
      vmid_start: 300
      ip_template: "10.7.1.{}/24"
      ip_start: 230
      gateway: 10.7.1.1
      inventory_path: ./inventory

Hosts are added to the play's groups in memory. With ``inventory_path``,
``host_vars/<host>`` and ``groups/<group>`` files are written as well so
later runs see the same fleet.
"""

import copy
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from convoy.engine.errors import InventoryError, ParseError
from convoy.inventory.inventory import Inventory

logger = logging.getLogger(__name__)

INSTANTIATE_KEYS = {
    'pattern', 'nodes', 'provision', 'vmid_start', 'ip_template', 'ip_start',
    'gateway', 'inventory_path',
}

BRACE_PATTERN = re.compile(r'\{([^{}]*)\}')
RANGE_PATTERN = re.compile(r'^\s*(\d+)\.\.(\d+)\s*$')

HOST_VARS_HEADER = "# Generated by instantiate\n"


def expand_pattern(pattern: str) -> List[str]:
    """
    Expand a host name pattern.

    ``{01..10}`` is a numeric range (the width of the start value sets the
    zero padding) and ``{a,b,c}`` lists alternatives. Several brace groups
    expand left to right.

    Raises:
        ParseError: If a brace group is neither form
    """
    match = BRACE_PATTERN.search(pattern)
    if match is None:
        return [pattern]

    prefix = pattern[:match.start()]
    suffix = pattern[match.end():]
    body = match.group(1)

    range_match = RANGE_PATTERN.match(body)
    if range_match:
        start_str, end_str = range_match.groups()
        start, end = int(start_str), int(end_str)
        if end < start:
            raise ParseError(f"invalid range in pattern: {{{body}}}")
        width = len(start_str)
        choices = [str(i).zfill(width) for i in range(start, end + 1)]
    elif ',' in body:
        choices = [item.strip() for item in body.split(',')]
    else:
        raise ParseError(f"invalid pattern group: {{{body}}}")

    results: List[str] = []
    for choice in choices:
        results.extend(expand_pattern(prefix + choice + suffix))
    return results


@dataclass
class InstantiateSpec:
    pattern: str
    nodes: List[str]
    provision: Dict[str, Any] = field(default_factory=dict)
    vmid_start: Optional[int] = None
    ip_template: Optional[str] = None
    ip_start: int = 1
    gateway: Optional[str] = None
    inventory_path: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InstantiateSpec":
        unknown = set(data) - INSTANTIATE_KEYS
        if unknown:
            raise ParseError(f"unknown keys in instantiate: {', '.join(sorted(unknown))}")
        if not data.get('pattern'):
            raise ParseError("instantiate requires 'pattern'")
        nodes = data.get('nodes') or []
        if isinstance(nodes, str):
            nodes = [nodes]
        if not nodes:
            raise ParseError("instantiate: nodes list cannot be empty")
        provision = data.get('provision') or {}
        if not isinstance(provision, dict) or 'type' not in provision:
            raise ParseError("instantiate: 'provision' must be a mapping with a 'type'")
        try:
            vmid_start = int(data['vmid_start']) if data.get('vmid_start') is not None else None
            ip_start = int(data.get('ip_start', 1))
        except (TypeError, ValueError):
            raise ParseError("instantiate: 'vmid_start' and 'ip_start' must be integers")
        inventory_path = data.get('inventory_path')
        return cls(
            pattern=str(data['pattern']),
            nodes=[str(n) for n in nodes],
            provision=dict(provision),
            vmid_start=vmid_start,
            ip_template=str(data['ip_template']) if data.get('ip_template') else None,
            ip_start=ip_start,
            gateway=str(data['gateway']) if data.get('gateway') else None,
            inventory_path=str(inventory_path) if inventory_path else None,
        )


@dataclass
class GeneratedHost:
    name: str
    node: str
    variables: Dict[str, Any]


def generate_hosts(spec: InstantiateSpec) -> List[GeneratedHost]:
    """Expand the pattern and build each host's variables."""
    generated = []
    for index, name in enumerate(expand_pattern(spec.pattern)):
        node = spec.nodes[index % len(spec.nodes)]
        provision = copy.deepcopy(spec.provision)
        provision['node'] = node
        provision['hostname'] = name.split('.', 1)[0]
        if spec.vmid_start is not None:
            provision['vmid'] = spec.vmid_start + index

        variables: Dict[str, Any] = {}
        if spec.ip_template:
            ip = spec.ip_template.replace('{}', str(spec.ip_start + index))
            provision['ip'] = ip
            variables['ip'] = ip
        if spec.gateway:
            provision['gateway'] = spec.gateway
            variables['gateway'] = spec.gateway
        variables['provision'] = provision
        generated.append(GeneratedHost(name=name, node=node, variables=variables))
    return generated


def apply_instantiate(inventory: Inventory, spec: InstantiateSpec, groups: List[str]) -> List[str]:
    """
    Add the generated hosts to ``groups`` and, if configured, persist them.

    Returns:
        The generated host names, in pattern order
    """
    hosts = generate_hosts(spec)
    logger.info("instantiate: generating %d hosts", len(hosts))

    for generated in hosts:
        for group in groups:
            inventory.store_host(group, generated.name)
        host = inventory.get_host(generated.name)
        host.set_variables(generated.variables)
        host.provision = generated.variables['provision']

    if spec.inventory_path:
        write_inventory(Path(spec.inventory_path), hosts, groups)

    return [generated.name for generated in hosts]


def _read_existing(path: Path) -> Dict[str, Any]:
    if not path.is_file():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding='utf-8'))
    except yaml.YAMLError as e:
        raise InventoryError(f"cannot merge into malformed YAML: {e}", file_path=str(path))
    return data if isinstance(data, dict) else {}


def write_inventory(inventory_path: Path, hosts: List[GeneratedHost], groups: List[str]) -> None:
    """
    Write ``host_vars/<host>`` and ``groups/<group>`` files.

    Existing host_vars keep every key except ``provision``; existing group
    files keep their host list, with new hosts merged in and sorted.
    """
    host_vars_dir = inventory_path / "host_vars"
    groups_dir = inventory_path / "groups"
    host_vars_dir.mkdir(parents=True, exist_ok=True)
    groups_dir.mkdir(parents=True, exist_ok=True)

    for generated in hosts:
        host_file = host_vars_dir / generated.name
        merged = dict(generated.variables)
        for key, value in _read_existing(host_file).items():
            if key != 'provision':
                merged[key] = value
        host_file.write_text(
            f"{HOST_VARS_HEADER}# Node: {generated.node}\n\n" + yaml.safe_dump(merged, default_flow_style=False),
            encoding='utf-8',
        )

    for group in groups:
        group_file = groups_dir / group
        document = _read_existing(group_file)
        names = [str(h) for h in document.get('hosts') or []]
        for generated in hosts:
            if generated.name not in names:
                names.append(generated.name)
        document['hosts'] = sorted(names)
        group_file.write_text(yaml.safe_dump(document, default_flow_style=False), encoding='utf-8')

    logger.info("instantiate: wrote %d host_vars files under %s", len(hosts), inventory_path)
