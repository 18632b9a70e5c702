"""
Convoy Traversal

Walks playbooks -> plays -> batches -> roles -> tasks and hands each task to
the scheduler (sync mode) or flattens a batch's tasks for the async executor.

For every batch:

    provision -> connect -> role tasks -> loose tasks -> role handlers -> loose handlers

Role dependencies are processed before the role that declares them, each
role at most once per batch and mode. A role that is reached again while it
is still being expanded is a cycle.
"""

import dataclasses
import enum
import itertools
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Set

from convoy.connections.base import ConnectionFactory
from convoy.engine.async_exec import AsyncExecutionContext
from convoy.engine.async_ui import AsyncUI
from convoy.engine.context import PlaybookContext
from convoy.engine.errors import ConnectionError, HostFailedError, InventoryError, ProvisionError, RoleCycleError
from convoy.engine.fsm import ScheduledTask, run_task_on_host
from convoy.engine.instantiate import apply_instantiate
from convoy.engine.playbook import Play, PlaybookParser, Role, RoleInvocation, find_role, load_task_file
from convoy.engine.provision import ensure_host_provisioned
from convoy.engine.results import HostOutcome
from convoy.engine.scheduler import DEFAULT_THREADS, Scheduler
from convoy.engine.templating import TemplateEngine
from convoy.engine.visitor import PlaybookVisitor
from convoy.inventory.host import Host
from convoy.inventory.inventory import Inventory
from convoy.modules.base import Module
from convoy.tasks.response import TaskResponse, TaskStatus

logger = logging.getLogger(__name__)

DEFAULT_ROLE_PATH = Path("roles")


class HandlerMode(enum.Enum):
    NORMAL = "tasks"
    HANDLERS = "handlers"


# Receives each task as the traversal reaches it
TaskSink = Callable[[ScheduledTask, Optional[RoleInvocation]], Awaitable[None]]


@dataclass
class RunState:
    """Everything a run needs, built once per run."""

    context: PlaybookContext
    inventory: Inventory
    connection_factory: ConnectionFactory
    visitor: PlaybookVisitor
    playbook_paths: List[Path] = field(default_factory=list)
    role_paths: List[Path] = field(default_factory=lambda: [DEFAULT_ROLE_PATH])
    engine: TemplateEngine = field(default_factory=TemplateEngine)
    check_mode: bool = False
    limit_groups: List[str] = field(default_factory=list)
    limit_hosts: List[str] = field(default_factory=list)
    batch_size: Optional[int] = None
    threads: int = DEFAULT_THREADS
    tags: List[str] = field(default_factory=list)
    async_mode: bool = False

    processed_roles: Dict[HandlerMode, Set[str]] = field(
        default_factory=lambda: {mode: set() for mode in HandlerMode}
    )
    role_stack: List[str] = field(default_factory=list)
    _task_ids: "itertools.count[int]" = field(default_factory=lambda: itertools.count(1))

    def next_task_id(self) -> int:
        return next(self._task_ids)

    def reset_role_tracking(self) -> None:
        for processed in self.processed_roles.values():
            processed.clear()
        self.role_stack.clear()


# Playbooks and plays

async def playbook_traversal(run_state: RunState) -> None:
    """
    Run every playbook in order.

    Raises:
        ParseError, InventoryError, RoleCycleError, HostFailedError: Run-scoped failures
    """
    context = run_state.context
    try:
        for playbook_path in run_state.playbook_paths:
            path = Path(playbook_path)
            context.set_playbook_path(path)
            run_state.visitor.on_playbook_start(path)

            parser = PlaybookParser(path)
            for play in parser.parse():
                try:
                    await handle_play(run_state, parser, play)
                finally:
                    await context.connection_cache.clear()
    finally:
        await context.connection_cache.clear()


async def handle_play(run_state: RunState, parser: PlaybookParser, play: Play) -> None:
    context = run_state.context
    inventory = run_state.inventory

    context.set_play(play)
    run_state.visitor.on_play_start(play)

    if play.instantiate is not None:
        spec = play.instantiate
        if spec.inventory_path and not Path(spec.inventory_path).is_absolute():
            spec = dataclasses.replace(spec, inventory_path=str(parser.resolve_vars_file(spec.inventory_path)))
        apply_instantiate(inventory, spec, play.groups)

    for group_name in run_state.limit_groups:
        if not inventory.has_group(group_name):
            raise InventoryError(f"limit group not found: {group_name}")
    for host_name in run_state.limit_hosts:
        if not inventory.has_host(host_name):
            raise InventoryError(f"limit host not found: {host_name}")
    for group_name in play.groups:
        if not inventory.has_group(group_name):
            raise InventoryError(f"group not found in inventory: {group_name}")

    hosts = get_play_hosts(run_state, play)
    if not hosts:
        raise InventoryError("no hosts selected by groups in play")

    # vars_files override inline vars
    play_vars = dict(play.vars)
    play_vars.update(parser.load_vars_files(play))
    context.load_play_vars(play_vars, play.defaults)
    check_role_graph(run_state, play)

    batches = get_host_batches(run_state, play, hosts)
    for number, batch in enumerate(batches, start=1):
        run_state.visitor.on_batch_start(number, len(batches), batch)
        try:
            await handle_batch(run_state, play, batch)
        finally:
            await context.connection_cache.clear()


def get_play_hosts(run_state: RunState, play: Play) -> List[Host]:
    """Hosts under the play's groups, narrowed by the host and group limits, sorted by name."""
    inventory = run_state.inventory
    selected: Dict[str, Host] = {}
    for group_name in play.groups:
        for name, host in inventory.get_descendant_hosts(group_name).items():
            if run_state.limit_hosts and name not in run_state.limit_hosts:
                continue
            if run_state.limit_groups and not any(
                inventory.has_ancestor_group(name, group) for group in run_state.limit_groups
            ):
                continue
            selected[name] = host
    return [selected[name] for name in sorted(selected)]


def get_host_batches(run_state: RunState, play: Play, hosts: List[Host]) -> List[List[Host]]:
    size = play.batch_size or run_state.batch_size or len(hosts)
    ordered = sorted(hosts, key=lambda host: host.name)
    return [ordered[i:i + size] for i in range(0, len(ordered), size)]


# Batches

async def handle_batch(run_state: RunState, play: Play, hosts: List[Host]) -> None:
    context = run_state.context
    context.set_targeted_hosts(hosts)
    run_state.reset_role_tracking()

    await provision_hosts(run_state, hosts)
    await connect_hosts(run_state)

    if run_state.async_mode:
        await run_async_batch(run_state, play)
    else:
        for invocation in play.roles:
            await process_role(run_state, invocation, HandlerMode.NORMAL, _dispatch(run_state))
        context.unset_role()
        for task in play.tasks:
            await process_task(run_state, _schedule(run_state, task, HandlerMode.NORMAL))

    for invocation in play.roles:
        await process_role(run_state, invocation, HandlerMode.HANDLERS, _dispatch(run_state))
    context.unset_role()
    for handler in play.handlers:
        await process_task(run_state, _schedule(run_state, handler, HandlerMode.HANDLERS))


async def provision_hosts(run_state: RunState, hosts: List[Host]) -> None:
    """Run provisioners for hosts that carry a descriptor. A failure fails only that host."""
    context = run_state.context
    for host in hosts:
        if not host.provision:
            continue
        try:
            await ensure_host_provisioned(host)
        except ProvisionError as e:
            _record(run_state, HostOutcome(
                host=host.name,
                task_name="provision",
                response=TaskResponse(TaskStatus.FAILED, msg=str(e)),
                msg=str(e),
            ))
    logger.debug("provisioning done, %d hosts remain", len(context.get_remaining_hosts()))


async def connect_hosts(run_state: RunState) -> None:
    """Open a connection to every remaining host. Unreachable hosts are marked failed."""
    context = run_state.context

    async def connect(host: Host) -> List[HostOutcome]:
        try:
            await run_state.connection_factory.get_connection(context, host)
        except ConnectionError as e:
            return [HostOutcome(host=host.name, task_name="connect", unreachable=True, msg=str(e))]
        return []

    hosts = list(context.get_remaining_hosts().values())
    for outcome in await Scheduler(run_state.threads).run(hosts, connect):
        context.record_outcome(outcome)
        run_state.visitor.on_host_unreachable(context.seen_hosts[outcome.host], outcome.msg)


async def run_async_batch(run_state: RunState, play: Play) -> None:
    """Flatten role and loose tasks, then let every host run them independently."""
    context = run_state.context
    tasks: List[ScheduledTask] = []

    async def collect(scheduled: ScheduledTask, invocation: Optional[RoleInvocation]) -> None:
        if _skip_by_tags(run_state, scheduled, invocation):
            return
        tasks.append(scheduled)

    for invocation in play.roles:
        await process_role(run_state, invocation, HandlerMode.NORMAL, collect, announce=False)
    context.unset_role()
    for task in play.tasks:
        await collect(_schedule(run_state, task, HandlerMode.NORMAL), None)

    hosts = list(context.get_remaining_hosts().values())
    if not hosts:
        raise HostFailedError("no hosts remaining")
    if not tasks:
        return

    execution = AsyncExecutionContext.from_tasks(tasks, len(hosts))
    logger.info("async batch: %d tasks, %d hosts, %d barriers", len(tasks), len(hosts), execution.barrier_count)
    ui = AsyncUI(run_state.visitor, context)
    ui.start()
    try:
        await execution.run(run_state, hosts, ui)
    finally:
        await ui.stop()


# Roles and tasks

async def process_role(
    run_state: RunState,
    invocation: RoleInvocation,
    mode: HandlerMode,
    sink: TaskSink,
    announce: bool = True,
) -> None:
    """
    Process a role's dependencies, then its task (or handler) files.

    Raises:
        RoleCycleError: If the role depends on itself, directly or not
        ParseError: If the role or one of its files cannot be loaded
    """
    name = invocation.role
    processed = run_state.processed_roles[mode]
    if name in processed:
        return

    if name in run_state.role_stack:
        raise RoleCycleError(run_state.role_stack + [name])

    run_state.role_stack.append(name)
    role = find_role(name, role_search_paths(run_state))
    for dependency in role.dependencies:
        await process_role(
            run_state,
            RoleInvocation(role=dependency, tags=list(invocation.tags)),
            mode,
            sink,
            announce=announce,
        )
    run_state.role_stack.pop()

    context = run_state.context
    context.set_role(role.name, role.path, invocation.vars, role.defaults)
    files = role.tasks if mode == HandlerMode.NORMAL else role.handlers
    if announce and files:
        run_state.visitor.on_role_start(role.name)

    for file_name in files:
        for task in load_task_file(role.resolve_file(mode.value, file_name)):
            await sink(_schedule(run_state, task, mode, role, invocation), invocation)

    processed.add(name)


def check_role_graph(run_state: RunState, play: Play) -> None:
    """
    Load every role the play reaches through its dependencies.

    Raises:
        RoleCycleError: If a role depends on itself, directly or not
        ParseError: If a role cannot be found or loaded
    """
    search_paths = role_search_paths(run_state)
    checked: Set[str] = set()

    def visit(name: str, chain: List[str]) -> None:
        if name in chain:
            raise RoleCycleError(chain + [name])
        if name in checked:
            return
        role = find_role(name, search_paths)
        for dependency in role.dependencies:
            visit(dependency, chain + [name])
        checked.add(name)

    for invocation in play.roles:
        visit(invocation.role, [])


def role_search_paths(run_state: RunState) -> List[Path]:
    """Configured role paths; relative ones are tried against the playbook directory first."""
    paths: List[Path] = []
    base = run_state.context.playbook_directory
    for role_path in run_state.role_paths:
        role_path = Path(role_path)
        if not role_path.is_absolute() and base is not None:
            paths.append(base / role_path)
        paths.append(role_path)
    return paths


async def process_task(
    run_state: RunState,
    scheduled: ScheduledTask,
    invocation: Optional[RoleInvocation] = None,
) -> None:
    """
    Run one task on every remaining host.

    Raises:
        HostFailedError: If no hosts remain
    """
    context = run_state.context
    hosts = list(context.get_remaining_hosts().values())
    if not hosts:
        raise HostFailedError("no hosts remaining", task=scheduled.name)

    if _skip_by_tags(run_state, scheduled, invocation):
        return

    context.set_task(scheduled.name)
    run_state.visitor.on_task_start(scheduled.name, handler=scheduled.handler)

    async def worker(host: Host) -> List[HostOutcome]:
        return await run_task_on_host(run_state, scheduled, host)

    for outcome in await Scheduler(run_state.threads).run(hosts, worker):
        _record(run_state, outcome)


def tags_match(cli_tags: Sequence[str], task: Module, invocation: Optional[RoleInvocation] = None) -> bool:
    """
    Whether a task runs under ``--tags``.

    Without CLI tags every task runs. Otherwise a task runs when one of its
    own tags or one of its role invocation's tags was requested.
    """
    if not cli_tags:
        return True
    pre = task.get_with()
    if pre is not None and any(tag in cli_tags for tag in pre.tags):
        return True
    if invocation is not None and any(tag in cli_tags for tag in invocation.tags):
        return True
    return False


def _skip_by_tags(run_state: RunState, scheduled: ScheduledTask, invocation: Optional[RoleInvocation]) -> bool:
    if tags_match(run_state.tags, scheduled.task, invocation):
        return False
    hosts = list(run_state.context.get_remaining_hosts().values())
    for host in hosts:
        run_state.context.record_outcome(
            HostOutcome(host=host.name, task_name=scheduled.name, skipped=True, msg="tags did not match")
        )
    run_state.visitor.on_task_skipped_by_tags(scheduled.name, hosts)
    return True


def _record(run_state: RunState, outcome: HostOutcome) -> None:
    run_state.context.record_outcome(outcome)
    run_state.visitor.on_host_outcome(outcome)


def _dispatch(run_state: RunState) -> TaskSink:
    async def dispatch(scheduled: ScheduledTask, invocation: Optional[RoleInvocation]) -> None:
        await process_task(run_state, scheduled, invocation)
    return dispatch


def _schedule(
    run_state: RunState,
    task: Module,
    mode: HandlerMode,
    role: Optional[Role] = None,
    invocation: Optional[RoleInvocation] = None,
) -> ScheduledTask:
    return ScheduledTask(
        task=task,
        task_id=run_state.next_task_id(),
        role=role.name if role else None,
        role_vars=dict(invocation.vars) if invocation else {},
        role_defaults=dict(role.defaults) if role else {},
        role_tags=list(invocation.tags) if invocation else [],
        handler=mode == HandlerMode.HANDLERS,
    )
