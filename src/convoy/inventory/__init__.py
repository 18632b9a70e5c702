"""
Convoy Inventory Module

Host/group graph, variable blending, and inventory directory loading.
"""

from convoy.inventory.host import Host, OSType
from convoy.inventory.group import Group
from convoy.inventory.inventory import Inventory, ALL_GROUP
from convoy.inventory.loader import load_inventory

__all__ = ['Host', 'OSType', 'Group', 'Inventory', 'ALL_GROUP', 'load_inventory']
