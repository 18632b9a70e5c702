"""
Convoy Provisioning

Hosts may carry a ``provision`` descriptor (from host_vars or an
``instantiate`` block). Before a batch connects, each such host is handed
to the provisioner named by the descriptor's ``type``.

Only the ``noop`` provisioner ships; real infrastructure backends plug in
through ``PROVISIONERS``.
"""

import enum
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Type

from convoy.engine.errors import ProvisionError
from convoy.inventory.host import Host

logger = logging.getLogger(__name__)


class ProvisionResult(enum.Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    DESTROYED = "destroyed"


class Provisioner(ABC):
    """Creates (or verifies) the infrastructure behind a host."""

    @abstractmethod
    async def ensure(self, host: Host, config: Dict[str, Any]) -> ProvisionResult:
        """
        Make sure the host exists.

        Raises:
            ProvisionError: If the host cannot be provisioned
        """


class NoopProvisioner(Provisioner):
    """Treats every host as already provisioned."""

    async def ensure(self, host: Host, config: Dict[str, Any]) -> ProvisionResult:
        logger.debug("noop provisioner: %s already exists", host.name)
        return ProvisionResult.ALREADY_EXISTS


PROVISIONERS: Dict[str, Type[Provisioner]] = {
    'noop': NoopProvisioner,
}


def get_provisioner(host: Host, provision_type: str) -> Provisioner:
    """
    Look up a provisioner by type.

    Raises:
        ProvisionError: If the type is not registered
    """
    cls = PROVISIONERS.get(provision_type)
    if cls is None:
        raise ProvisionError(host.name, f"unknown provision type '{provision_type}'")
    return cls()


async def ensure_host_provisioned(host: Host) -> ProvisionResult:
    """Run the host's provisioner, if it has a descriptor."""
    config = host.provision
    if not config:
        return ProvisionResult.ALREADY_EXISTS
    provisioner = get_provisioner(host, str(config.get('type', '')))
    result = await provisioner.ensure(host, config)
    logger.info("provisioned %s: %s", host.name, result.value)
    return result
