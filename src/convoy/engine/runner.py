"""
Convoy Playbook Runner

High-level runner that builds a run from a ``RunConfig``: inventory,
connection factory, context and visitor, then drives the traversal and maps
the outcome to a process exit code.
"""

import asyncio
import logging
import sys
from typing import Optional

from convoy.config import LOCAL_MODES, ConnectionMode, RunConfig
from convoy.connections.base import LOCALHOST, ConnectionFactory
from convoy.connections.chroot import ChrootFactory
from convoy.connections.local import LocalFactory
from convoy.connections.noop import NoFactory
from convoy.connections.ssh import SshFactory
from convoy.engine.context import PlaybookContext
from convoy.engine.errors import ConvoyError, ExitCode
from convoy.engine.results import PlaybookResult
from convoy.engine.traversal import RunState, playbook_traversal
from convoy.engine.visitor import PlaybookVisitor
from convoy.inventory.inventory import Inventory
from convoy.inventory.loader import load_inventory

logger = logging.getLogger(__name__)


class PlaybookRunner:
    """
    Runs the playbooks named by a RunConfig.

    Usage:
        runner = PlaybookRunner(RunConfig(playbook_paths=[Path("site.yml")], mode=ConnectionMode.LOCAL))
        exit_code = runner.run()
        runner.result.host_stats
    """

    def __init__(
        self,
        config: RunConfig,
        inventory: Optional[Inventory] = None,
        connection_factory: Optional[ConnectionFactory] = None,
    ):
        self.config = config
        self._inventory = inventory
        self._connection_factory = connection_factory
        self.context: Optional[PlaybookContext] = None
        self.visitor: Optional[PlaybookVisitor] = None
        self.result: Optional[PlaybookResult] = None

    def run(self) -> int:
        """
        Run playbooks synchronously.

        Returns:
            Exit code (0=success, 2=host failures, 3=parse/config error, 1=other, 130=interrupted)
        """
        try:
            self.result = asyncio.run(self.run_async())
            return self.result.exit_code
        except ConvoyError as e:
            self._print_error(f"Error: {e}")
            return int(e.exit_code)
        except KeyboardInterrupt:
            self._print_error("\nInterrupted")
            return ExitCode.KEYBOARD_INTERRUPT

    async def run_async(self) -> PlaybookResult:
        """
        Run the traversal and return per-host results.

        Raises:
            ConvoyError: On run-scoped failures (after printing the recap)
        """
        self.config.validate()
        run_state = self.build_run_state()
        try:
            await playbook_traversal(run_state)
        finally:
            run_state.visitor.on_recap()
        return self._build_result(run_state.context)

    def build_inventory(self) -> Inventory:
        if self._inventory is not None:
            inventory = self._inventory
        else:
            inventory = Inventory()
            load_inventory(inventory, self.config.inventory_paths)
        if self.config.mode in LOCAL_MODES and not inventory.get_hosts():
            inventory.store_host("all", LOCALHOST)
        return inventory

    def build_connection_factory(self, inventory: Inventory) -> ConnectionFactory:
        if self._connection_factory is not None:
            return self._connection_factory
        config = self.config
        if config.mode == ConnectionMode.LOCAL:
            return LocalFactory(inventory)
        if config.mode == ConnectionMode.CHROOT:
            return ChrootFactory(inventory, str(config.chroot_root))
        if config.mode == ConnectionMode.SIMULATE:
            return NoFactory()
        return SshFactory(
            inventory,
            forward_agent=config.forward_agent,
            login_password=config.login_password,
            private_key_file=config.private_key_file,
        )

    def build_run_state(self) -> RunState:
        config = self.config
        inventory = self.build_inventory()
        self.context = PlaybookContext(
            verbosity=config.verbosity,
            ssh_user=config.ssh_user,
            ssh_port=config.ssh_port,
            sudo=config.sudo,
            extra_vars=config.extra_vars,
        )
        self.visitor = PlaybookVisitor(
            self.context,
            log_path=config.log_path,
            quiet=config.quiet,
            check_mode=config.check_mode,
        )
        logger.debug("run %s: mode=%s async=%s", self.context.run_id, config.mode.value, config.async_mode)
        return RunState(
            context=self.context,
            inventory=inventory,
            connection_factory=self.build_connection_factory(inventory),
            visitor=self.visitor,
            playbook_paths=list(config.playbook_paths),
            role_paths=list(config.role_paths),
            check_mode=config.check_mode,
            limit_groups=list(config.limit_groups),
            limit_hosts=list(config.limit_hosts),
            batch_size=config.batch_size,
            threads=config.threads,
            tags=list(config.tags),
            async_mode=config.async_mode,
        )

    def _build_result(self, context: PlaybookContext) -> PlaybookResult:
        return PlaybookResult(
            playbook_paths=[str(p) for p in self.config.playbook_paths],
            host_stats=dict(context.host_stats),
            failed_hosts=sorted(context.failed_hosts),
            run_id=context.run_id,
        )

    def _print_error(self, msg: str) -> None:
        if not self.config.quiet:
            print(f"\033[31m{msg}\033[0m", file=sys.stderr)
