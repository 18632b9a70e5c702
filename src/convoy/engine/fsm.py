"""
Convoy Task State Machine

Drives one task through its phases on one host:

    Validate (untemplated) -> pre-logic -> Query -> Create | Modify | Remove
                                                    | Execute | Passive

Query must not change the host; the follow-up phase is chosen strictly from
the Query status, and Modify carries exactly the fields Query reported. In
check mode the machine stops after Query.

Host-scoped errors (module, template, connection) are turned into failed
outcomes here; nothing else in the engine catches them. The returned
outcomes are folded into the run context by the coordinator, never here.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from convoy.connections.base import LOCALHOST, Connection
from convoy.engine.errors import (
    CommandFailedError,
    ConnectionError,
    InventoryError,
    ModuleError,
    ParseError,
    TemplateError,
)
from convoy.engine.results import HostOutcome
from convoy.engine.templating import TemplateMode
from convoy.inventory.host import Host
from convoy.modules.base import EvaluatedTask, Module
from convoy.modules.handle import TaskHandle
from convoy.tasks.logic import ItemsInput, PostLogicEvaluated, PreLogicEvaluated
from convoy.tasks.request import SudoDetails, TaskRequest
from convoy.tasks.response import EXPECTED_COMPLETION, TaskResponse, TaskStatus

if TYPE_CHECKING:
    from convoy.engine.traversal import RunState

logger = logging.getLogger(__name__)

ITEM_VARIABLE = "item"

# Placeholder for a task without a loop
_NO_ITEM = object()

# Query status -> request for the phase that completes it
_FOLLOW_UP = {
    TaskStatus.NEEDS_CREATION: TaskRequest.create,
    TaskStatus.NEEDS_REMOVAL: TaskRequest.remove,
    TaskStatus.NEEDS_EXECUTION: TaskRequest.execute,
    TaskStatus.NEEDS_PASSIVE: TaskRequest.passive,
}


@dataclass
class ScheduledTask:
    """A task plus the role scope it runs in."""

    task: Module
    task_id: int = 0
    role: Optional[str] = None
    role_vars: Dict[str, Any] = field(default_factory=dict)
    role_defaults: Dict[str, Any] = field(default_factory=dict)
    role_tags: List[str] = field(default_factory=list)
    handler: bool = False

    @property
    def name(self) -> str:
        return self.task.get_name() or self.task.get_module()


def _failed(host: Host, task_name: str, msg: str, response: Optional[TaskResponse] = None,
            unreachable: bool = False) -> HostOutcome:
    return HostOutcome(
        host=host.name,
        task_name=task_name,
        response=response or TaskResponse(TaskStatus.FAILED, msg=msg),
        unreachable=unreachable,
        msg=msg,
    )


def _skipped(host: Host, task_name: str, msg: str) -> HostOutcome:
    return HostOutcome(host=host.name, task_name=task_name, skipped=True, msg=msg)


def _error_message(error: Exception) -> str:
    if isinstance(error, ModuleError):
        return error.reason
    return str(error)


async def run_task_on_host(run_state: "RunState", scheduled: ScheduledTask, host: Host) -> List[HostOutcome]:
    """
    Run a task on one host.

    Returns one outcome per loop item (a single outcome without ``items``).
    Looping stops at the first failed item.
    """
    context = run_state.context
    task_name = scheduled.name
    host.set_task_id(scheduled.task_id)

    try:
        connection = await run_state.connection_factory.get_connection(context, host)
    except ConnectionError as e:
        return [_failed(host, task_name, str(e), unreachable=True)]

    variables = context.get_complete_blended_variables(
        run_state.inventory, host, role_vars=scheduled.role_vars, role_defaults=scheduled.role_defaults,
    )

    # Validation pass: parameters are checked but not rendered
    handle = _make_handle(run_state, scheduled, host, connection, variables)
    try:
        validated = scheduled.task.evaluate(handle, TaskRequest.validate(), TemplateMode.OFF)
    except (ModuleError, TemplateError, ParseError) as e:
        return [_failed(host, task_name, f"validation failed: {_error_message(e)}")]

    pre = validated.with_logic
    if scheduled.handler:
        signal = (pre.subscribe if pre and pre.subscribe else None) or task_name
        if not host.is_notified(context.play_count, signal):
            return [_skipped(host, task_name, "handler not notified")]

    try:
        items = _resolve_items(run_state, pre, variables)
    except TemplateError as e:
        return [_failed(host, task_name, str(e))]

    outcomes = []
    for item in items:
        item_vars = dict(variables)
        if item is not _NO_ITEM:
            item_vars[ITEM_VARIABLE] = item
        outcome = await _run_with_retry(run_state, scheduled, host, connection, item_vars)
        outcomes.append(outcome)
        if outcome.failed:
            break
    return outcomes


def _resolve_items(run_state: "RunState", pre: Optional[PreLogicEvaluated], variables: Dict[str, Any]) -> List[Any]:
    items: Optional[ItemsInput] = pre.items if pre else None
    if items is None:
        return [_NO_ITEM]
    if items.variable is not None:
        if items.variable not in variables:
            raise TemplateError(f"items variable '{items.variable}' is not defined", field="items")
        value = variables[items.variable]
        if not isinstance(value, list):
            raise TemplateError(f"items variable '{items.variable}' is not a list", field="items")
        return list(value)
    return [run_state.engine.render_recursive(value, variables) for value in items.values or []]


def _make_handle(run_state: "RunState", scheduled: ScheduledTask, host: Host, connection: Connection,
                 variables: Dict[str, Any]) -> TaskHandle:
    return TaskHandle(
        scheduled.task.get_module(),
        host,
        connection,
        variables,
        run_state.engine,
        task_id=scheduled.task_id,
        check_mode=run_state.check_mode,
    )


async def _run_with_retry(run_state: "RunState", scheduled: ScheduledTask, host: Host, connection: Connection,
                          variables: Dict[str, Any]) -> HostOutcome:
    attempt = 0
    while True:
        outcome, post = await _run_once(run_state, scheduled, host, connection, variables)
        if not outcome.failed or outcome.unreachable or post is None or attempt >= post.retry:
            break
        attempt += 1
        logger.info("retrying %s on %s (%d/%d)", scheduled.name, host.name, attempt, post.retry)
        await asyncio.sleep(post.delay)

    if post is not None:
        if outcome.failed and post.ignore_errors and not outcome.unreachable:
            outcome.ignored = True
        if post.notify:
            outcome.notify = post.notify
    return outcome


async def _run_once(run_state: "RunState", scheduled: ScheduledTask, host: Host, connection: Connection,
                    variables: Dict[str, Any]) -> Tuple[HostOutcome, Optional[PostLogicEvaluated]]:
    task_name = scheduled.name
    handle = _make_handle(run_state, scheduled, host, connection, variables)
    query = TaskRequest.query()
    post: Optional[PostLogicEvaluated] = None

    try:
        # Logic blocks render before the parameters so a false condition can
        # guard parameters that reference undefined variables
        post_input = scheduled.task.get_and()
        if post_input is not None:
            post = post_input.evaluate(handle.template, query, TemplateMode.STRICT)
        pre_input = scheduled.task.get_with()
        pre = pre_input.evaluate(handle.template, query, TemplateMode.STRICT) if pre_input else None

        if pre is not None and not pre.condition:
            return _skipped(host, task_name, "condition was false"), post

        evaluated = scheduled.task.evaluate(handle, query, TemplateMode.STRICT)

        if pre is not None and pre.delegate_to:
            handle = await _delegate(run_state, scheduled, host, pre.delegate_to, variables)

        if pre is not None and pre.skip_if_exists:
            if await handle.remote.file_exists(None, pre.skip_if_exists):
                return _skipped(host, task_name, f"{pre.skip_if_exists} exists"), post

        sudo = _sudo_details(run_state, pre)
        response = await _converge(run_state, evaluated, handle, sudo)
    except CommandFailedError as e:
        response = handle.response.command_failed(query, e.result)
        return _failed(host, task_name, response.msg, response=response), post
    except (ModuleError, TemplateError, ParseError, InventoryError) as e:
        return _failed(host, task_name, _error_message(e)), post
    except ConnectionError as e:
        return _failed(host, task_name, str(e), unreachable=True), post

    return HostOutcome(host=host.name, task_name=task_name, response=response, msg=response.msg or ""), post


async def _delegate(run_state: "RunState", scheduled: ScheduledTask, host: Host, target: str,
                    variables: Dict[str, Any]) -> TaskHandle:
    """Handle that runs over the delegate's connection with the original host's variables."""
    context = run_state.context
    factory = run_state.connection_factory
    if target == LOCALHOST:
        connection = await factory.get_local_connection(context)
    else:
        connection = await factory.get_connection(context, run_state.inventory.get_host(target))
    logger.debug("delegating %s for %s to %s", scheduled.name, host.name, target)
    return _make_handle(run_state, scheduled, host, connection, variables)


def _sudo_details(run_state: "RunState", pre: Optional[PreLogicEvaluated]) -> Optional[SudoDetails]:
    context = run_state.context
    user = (pre.sudo if pre is not None and pre.sudo else None) or context.sudo
    if not user:
        return None
    return SudoDetails(user=user, template=context.sudo_template)


async def _converge(run_state: "RunState", evaluated: EvaluatedTask, handle: TaskHandle,
                    sudo: Optional[SudoDetails]) -> TaskResponse:
    action = evaluated.action
    query = TaskRequest.query(sudo)
    response = await action.dispatch(handle, query)
    status = response.status

    if status in (TaskStatus.IS_MATCHED, TaskStatus.FAILED):
        return response
    if status == TaskStatus.NOT_SUPPORTED:
        return TaskResponse(TaskStatus.FAILED, msg=response.msg or "query is not supported")
    if status not in EXPECTED_COMPLETION:
        return TaskResponse(TaskStatus.FAILED, msg=f"unexpected response to query: {status.value}")

    if run_state.check_mode:
        return response

    if status == TaskStatus.NEEDS_MODIFICATION:
        request = TaskRequest.modify(response.changes, sudo)
    else:
        request = _FOLLOW_UP[status](sudo)

    completed = await action.dispatch(handle, request)
    if completed.status == TaskStatus.FAILED:
        return completed
    if completed.status != EXPECTED_COMPLETION[status]:
        return TaskResponse(
            TaskStatus.FAILED,
            msg=f"unexpected response to {request.request_type.value}: {completed.status.value}",
        )
    return completed
