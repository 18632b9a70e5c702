"""
Convoy Inventory

The Inventory is the sole owner of every Host and Group. Relations between
them (group -> subgroups, group -> parents, group -> hosts, host -> groups)
are kept as insertion-ordered name sets in side indexes here, so hosts and
groups never hold references to each other.
"""

import copy
import logging
from typing import Any, Dict, Iterable, List

from convoy.engine.errors import InventoryError
from convoy.inventory.group import Group
from convoy.inventory.host import Host

logger = logging.getLogger(__name__)

ALL_GROUP = "all"

# Depth bounds for graph walks
ANCESTOR_DEPTH_LIMIT = 10
DESCENDANT_DEPTH_LIMIT = 20


def _ordered_add(index: Dict[str, Dict[str, None]], key: str, value: str) -> None:
    index.setdefault(key, {})[value] = None


class Inventory:
    """
    Host/group graph with variable blending.

    Group membership is a DAG: a group may have several parents, and every
    group other than "all" is attached beneath "all".
    """

    def __init__(self):
        self.hosts: Dict[str, Host] = {}
        self.groups: Dict[str, Group] = {}
        self._subgroups: Dict[str, Dict[str, None]] = {}
        self._parents: Dict[str, Dict[str, None]] = {}
        self._group_hosts: Dict[str, Dict[str, None]] = {}
        self._host_groups: Dict[str, Dict[str, None]] = {}

    # Lookups

    def has_group(self, name: str) -> bool:
        return name in self.groups

    def has_host(self, name: str) -> bool:
        return name in self.hosts

    def get_group(self, name: str) -> Group:
        try:
            return self.groups[name]
        except KeyError:
            raise InventoryError(f"group not found in inventory: {name}")

    def get_host(self, name: str) -> Host:
        try:
            return self.hosts[name]
        except KeyError:
            raise InventoryError(f"host not found in inventory: {name}")

    def get_hosts(self) -> List[Host]:
        return list(self.hosts.values())

    def get_groups(self) -> List[Group]:
        return list(self.groups.values())

    # Graph construction (all idempotent)

    def store_group(self, name: str) -> Group:
        """
        Create a group if it does not exist.

        Any group other than "all" is attached beneath "all".
        """
        if name not in self.groups:
            self.groups[name] = Group(name)
            self._subgroups.setdefault(name, {})
            self._parents.setdefault(name, {})
            self._group_hosts.setdefault(name, {})
            logger.debug("stored group %s", name)
        if name != ALL_GROUP:
            if ALL_GROUP not in self.groups:
                self.store_group(ALL_GROUP)
            self._link(ALL_GROUP, name)
        return self.groups[name]

    def store_subgroup(self, group_name: str, subgroup_name: str) -> None:
        """Make ``subgroup_name`` a child of ``group_name``."""
        if group_name == subgroup_name:
            raise InventoryError(f"group {group_name} cannot be a subgroup of itself")
        self.store_group(group_name)
        self.store_group(subgroup_name)
        self._link(group_name, subgroup_name)

    def store_group_parent(self, group_name: str, parent_name: str) -> None:
        """Make ``parent_name`` a parent of ``group_name``."""
        if group_name == parent_name:
            raise InventoryError(f"group {group_name} cannot be a parent of itself")
        self.store_subgroup(parent_name, group_name)

    def store_host(self, group_name: str, host_name: str) -> Host:
        """Create a host (and its group, if needed) and associate them."""
        if host_name not in self.hosts:
            self.hosts[host_name] = Host(host_name)
            self._host_groups.setdefault(host_name, {})
            logger.debug("stored host %s", host_name)
        self.associate_host_to_group(group_name, host_name)
        return self.hosts[host_name]

    def associate_host_to_group(self, group_name: str, host_name: str) -> None:
        self.store_group(group_name)
        if host_name not in self.hosts:
            raise InventoryError(f"host not found in inventory: {host_name}")
        _ordered_add(self._group_hosts, group_name, host_name)
        _ordered_add(self._host_groups, host_name, group_name)

    def store_host_variables(self, host_name: str, variables: Dict[str, Any]) -> None:
        self.get_host(host_name).set_variables(variables)

    def store_group_variables(self, group_name: str, variables: Dict[str, Any]) -> None:
        self.get_group(group_name).set_variables(variables)

    def _link(self, parent: str, child: str) -> None:
        _ordered_add(self._subgroups, parent, child)
        _ordered_add(self._parents, child, parent)

    # Direct relations

    def get_subgroups(self, group_name: str) -> List[str]:
        return list(self._subgroups.get(group_name, {}))

    def get_parent_groups(self, group_name: str) -> List[str]:
        return list(self._parents.get(group_name, {}))

    def get_direct_hosts(self, group_name: str) -> List[str]:
        return list(self._group_hosts.get(group_name, {}))

    def get_host_groups(self, host_name: str) -> List[str]:
        return list(self._host_groups.get(host_name, {}))

    # Traversal

    def _ancestor_depths(self, start: Iterable[str], depth_limit: int) -> Dict[str, int]:
        """
        Map each ancestor to the longest chain reaching it from ``start``.

        Dict order is first-discovery order, which is what breaks ties
        between ancestors at equal depth.
        """
        depths: Dict[str, int] = {}
        frontier = list(dict.fromkeys(start))
        depth = 1
        while frontier and depth <= depth_limit:
            next_frontier: Dict[str, None] = {}
            for name in frontier:
                if depths.get(name, 0) < depth:
                    depths[name] = depth
                for parent in self._parents.get(name, {}):
                    next_frontier[parent] = None
            frontier = list(next_frontier)
            depth += 1
        return depths

    def get_ancestor_groups(self, name: str, depth_limit: int = ANCESTOR_DEPTH_LIMIT) -> List[str]:
        """
        Return ancestor group names of a host or group, most distant first.

        Hosts take precedence when a host and a group share a name.
        """
        if name in self.hosts:
            start = self.get_host_groups(name)
        elif name in self.groups:
            start = self.get_parent_groups(name)
        else:
            raise InventoryError(f"no host or group named {name} in inventory")
        depths = self._ancestor_depths(start, depth_limit)
        return sorted(depths, key=lambda group: -depths[group])

    def has_ancestor_group(self, host_name: str, group_name: str) -> bool:
        return group_name in self.get_ancestor_groups(host_name)

    def get_descendant_groups(self, group_name: str, depth_limit: int = DESCENDANT_DEPTH_LIMIT) -> List[str]:
        """Return subgroup names reachable from a group, de-duplicated."""
        self.get_group(group_name)
        seen: Dict[str, None] = {}
        frontier = [group_name]
        depth = 0
        while frontier and depth < depth_limit:
            next_frontier: Dict[str, None] = {}
            for name in frontier:
                for child in self._subgroups.get(name, {}):
                    if child not in seen and child != group_name:
                        seen[child] = None
                        next_frontier[child] = None
            frontier = list(next_frontier)
            depth += 1
        return list(seen)

    def get_descendant_hosts(self, group_name: str, depth_limit: int = DESCENDANT_DEPTH_LIMIT) -> Dict[str, Host]:
        """Return every host under a group, keyed and de-duplicated by name."""
        result: Dict[str, Host] = {}
        for name in [group_name] + self.get_descendant_groups(group_name, depth_limit):
            for host_name in self._group_hosts.get(name, {}):
                result.setdefault(host_name, self.hosts[host_name])
        return result

    # Variables

    def get_group_blended_variables(self, group_name: str) -> Dict[str, Any]:
        """Fold a group's ancestors' variables, then its own."""
        blended: Dict[str, Any] = {}
        for ancestor in self.get_ancestor_groups(group_name):
            blended.update(self.groups[ancestor].get_variables())
        blended.update(self.get_group(group_name).get_variables())
        return blended

    def get_blended_variables(self, host_name: str) -> Dict[str, Any]:
        """
        Resolve the full variable mapping for a host.

        Layers, later overriding earlier:
            1. ancestor groups, most distant first
            2. the host's own variables
            3. facts gathered during the run
            4. convoy_hostname / convoy_hostname_short

        Returns a fresh copy; nothing in the inventory is mutated.
        """
        host = self.get_host(host_name)
        blended: Dict[str, Any] = {}
        for ancestor in self.get_ancestor_groups(host_name):
            blended.update(self.groups[ancestor].get_variables())
        blended.update(host.get_variables())
        blended.update(host.get_facts())
        blended["convoy_hostname"] = host.name
        blended["convoy_hostname_short"] = host.short_name
        return copy.deepcopy(blended)

    def __repr__(self) -> str:
        return f"Inventory(hosts={len(self.hosts)}, groups={len(self.groups)})"
