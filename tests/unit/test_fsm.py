"""
Tests for the per-host task state machine.
"""

from pathlib import Path
from typing import List, Optional

import pytest

from conftest import make_run_state
from convoy.connections.base import CommandResult, Connection, ConnectionFactory
from convoy.engine.context import PlaybookContext
from convoy.engine.errors import ConnectionError
from convoy.engine.fsm import ScheduledTask, run_task_on_host
from convoy.engine.playbook import parse_task
from convoy.engine.templating import TemplateMode
from convoy.inventory.host import Host
from convoy.inventory.inventory import Inventory
from convoy.modules.base import Action, EvaluatedTask, Module
from convoy.modules.handle import TaskHandle
from convoy.tasks.fields import Field
from convoy.tasks.logic import PostLogicInput, PreLogicInput
from convoy.tasks.request import TaskRequest, TaskRequestType
from convoy.tasks.response import TaskResponse, TaskStatus


class RecordingConnection(Connection):
    def __init__(self, host: Host):
        super().__init__(host)
        self.commands: List[str] = []

    async def connect(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def run_command(self, command, request=None, forward=False) -> CommandResult:
        self.commands.append(command)
        return CommandResult(cmd=command, out="", rc=0)

    async def copy_file(self, src: str, dest: str) -> None:
        pass

    async def write_data(self, data: str, dest: str) -> None:
        pass


class RecordingFactory(ConnectionFactory):
    def __init__(self, unreachable: Optional[List[str]] = None):
        self.connections = {}
        self.unreachable = unreachable or []

    async def get_connection(self, context: PlaybookContext, host: Host) -> Connection:
        if host.name in self.unreachable:
            raise ConnectionError(host.name, "no route to host")
        return self.connections.setdefault(host.name, RecordingConnection(host))

    async def get_local_connection(self, context: PlaybookContext) -> Connection:
        return await self.get_connection(context, Host("localhost"))


class ScriptedAction(Action):
    """Returns queued responses and records every request."""

    def __init__(self, query_responses, follow_up=None, command: Optional[str] = None):
        self.query_responses = list(query_responses)
        self.follow_up = follow_up
        self.command = command
        self.requests: List[TaskRequest] = []
        self.connections: List[str] = []

    async def dispatch(self, handle: TaskHandle, request: TaskRequest) -> TaskResponse:
        self.requests.append(request)
        self.connections.append(handle.connection.host.name)
        if self.command:
            await handle.remote.run(request, self.command)
        if request.request_type == TaskRequestType.QUERY:
            response = self.query_responses[0]
            if len(self.query_responses) > 1:
                self.query_responses.pop(0)
            return response
        return self.follow_up(request)


class ScriptedModule(Module):
    name = "scripted"
    optional_args = ["msg"]

    def __init__(self, action: ScriptedAction, pre_logic=None, post_logic=None):
        super().__init__({}, label="scripted", pre_logic=pre_logic, post_logic=post_logic)
        self.action = action

    def evaluate(self, handle: TaskHandle, request: TaskRequest, mode: TemplateMode) -> EvaluatedTask:
        return self.evaluated(self.action, handle, request, mode)


@pytest.fixture
def inventory() -> Inventory:
    inventory = Inventory()
    inventory.store_host("web", "web1")
    inventory.store_host("web", "web2")
    return inventory


async def run_on(inventory: Inventory, module: Module, host: str = "web1", factory=None, **kwargs):
    run_state = make_run_state(inventory, factory=factory or RecordingFactory(), **kwargs)
    return await run_task_on_host(run_state, ScheduledTask(task=module, task_id=1), inventory.get_host(host))


def request_types(action: ScriptedAction) -> List[TaskRequestType]:
    return [request.request_type for request in action.requests]


class TestPhases:
    """Test the Query -> follow-up protocol."""

    @pytest.mark.asyncio
    async def test_matched_stops_after_query(self, inventory: Inventory):
        action = ScriptedAction([TaskResponse(TaskStatus.IS_MATCHED)])
        [outcome] = await run_on(inventory, ScriptedModule(action))
        assert outcome.status == TaskStatus.IS_MATCHED
        assert request_types(action) == [TaskRequestType.QUERY]

    @pytest.mark.asyncio
    async def test_modify_carries_exactly_the_reported_fields(self, inventory: Inventory):
        action = ScriptedAction(
            [TaskResponse(TaskStatus.NEEDS_MODIFICATION, changes=frozenset({Field.MODE, Field.OWNER}))],
            follow_up=lambda request: TaskResponse(TaskStatus.IS_MODIFIED, changes=request.changes),
        )
        [outcome] = await run_on(inventory, ScriptedModule(action))

        assert outcome.status == TaskStatus.IS_MODIFIED
        assert request_types(action) == [TaskRequestType.QUERY, TaskRequestType.MODIFY]
        assert action.requests[1].changes == frozenset({Field.MODE, Field.OWNER})

    @pytest.mark.parametrize("needs,request_type,done", [
        (TaskStatus.NEEDS_CREATION, TaskRequestType.CREATE, TaskStatus.IS_CREATED),
        (TaskStatus.NEEDS_REMOVAL, TaskRequestType.REMOVE, TaskStatus.IS_REMOVED),
        (TaskStatus.NEEDS_EXECUTION, TaskRequestType.EXECUTE, TaskStatus.IS_EXECUTED),
        (TaskStatus.NEEDS_PASSIVE, TaskRequestType.PASSIVE, TaskStatus.IS_PASSIVE),
    ])
    @pytest.mark.asyncio
    async def test_follow_up_chosen_from_query(self, inventory: Inventory, needs, request_type, done):
        action = ScriptedAction([TaskResponse(needs)], follow_up=lambda request: TaskResponse(done))
        [outcome] = await run_on(inventory, ScriptedModule(action))
        assert outcome.status == done
        assert request_types(action) == [TaskRequestType.QUERY, request_type]

    @pytest.mark.asyncio
    async def test_check_mode_stops_after_query(self, inventory: Inventory):
        action = ScriptedAction(
            [TaskResponse(TaskStatus.NEEDS_CREATION)],
            follow_up=lambda request: TaskResponse(TaskStatus.IS_CREATED),
        )
        [outcome] = await run_on(inventory, ScriptedModule(action), check_mode=True)
        assert outcome.status == TaskStatus.NEEDS_CREATION
        assert not outcome.failed
        assert request_types(action) == [TaskRequestType.QUERY]

    @pytest.mark.asyncio
    async def test_wrong_completion_fails(self, inventory: Inventory):
        action = ScriptedAction(
            [TaskResponse(TaskStatus.NEEDS_CREATION)],
            follow_up=lambda request: TaskResponse(TaskStatus.IS_MODIFIED),
        )
        [outcome] = await run_on(inventory, ScriptedModule(action))
        assert outcome.failed
        assert outcome.msg == "unexpected response to create: modified"

    @pytest.mark.asyncio
    async def test_completion_status_from_query_fails(self, inventory: Inventory):
        action = ScriptedAction([TaskResponse(TaskStatus.IS_CREATED)])
        [outcome] = await run_on(inventory, ScriptedModule(action))
        assert outcome.failed
        assert outcome.msg == "unexpected response to query: created"

    @pytest.mark.asyncio
    async def test_unsupported_query_fails(self, inventory: Inventory):
        action = ScriptedAction([TaskResponse(TaskStatus.NOT_SUPPORTED, msg="no query here")])
        [outcome] = await run_on(inventory, ScriptedModule(action))
        assert outcome.failed
        assert outcome.msg == "no query here"

    @pytest.mark.asyncio
    async def test_unreachable_host(self, inventory: Inventory):
        action = ScriptedAction([TaskResponse(TaskStatus.IS_MATCHED)])
        [outcome] = await run_on(inventory, ScriptedModule(action), factory=RecordingFactory(["web1"]))
        assert outcome.unreachable
        assert outcome.failed
        assert action.requests == []


class TestPreLogic:
    """Test ``with:`` handling."""

    @pytest.mark.asyncio
    async def test_false_condition_skips_before_templating(self, inventory: Inventory):
        """Parameters referencing undefined variables are never rendered."""
        task = parse_task({
            "name": "greet",
            "echo": {"msg": "{{ undefined_thing }}"},
            "with": {"condition": "convoy_hostname == 'web2'"},
        }, Path("test.yml"))
        [outcome] = await run_on(inventory, task)
        assert outcome.skipped
        assert outcome.msg == "condition was false"

    @pytest.mark.asyncio
    async def test_undefined_variable_fails(self, inventory: Inventory):
        task = parse_task({"echo": {"msg": "{{ undefined_thing }}"}}, Path("test.yml"))
        [outcome] = await run_on(inventory, task)
        assert outcome.failed
        assert "undefined_thing" in outcome.msg

    @pytest.mark.asyncio
    async def test_items_list(self, inventory: Inventory):
        task = parse_task({
            "echo": {"msg": "pkg={{ item }}"},
            "with": {"items": ["nginx", "{{ convoy_hostname }}"]},
        }, Path("test.yml"))
        outcomes = await run_on(inventory, task)
        assert [o.msg for o in outcomes] == ["pkg=nginx", "pkg=web1"]

    @pytest.mark.asyncio
    async def test_items_variable(self, inventory: Inventory):
        inventory.store_group_variables("web", {"packages": ["a", "b", "c"]})
        task = parse_task({"echo": {"msg": "{{ item }}"}, "with": {"items": "packages"}}, Path("test.yml"))
        outcomes = await run_on(inventory, task)
        assert [o.msg for o in outcomes] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_items_variable_must_be_a_list(self, inventory: Inventory):
        inventory.store_group_variables("web", {"packages": "nginx"})
        task = parse_task({"echo": {"msg": "{{ item }}"}, "with": {"items": "packages"}}, Path("test.yml"))
        [outcome] = await run_on(inventory, task)
        assert outcome.failed
        assert "is not a list" in outcome.msg

    @pytest.mark.asyncio
    async def test_items_stop_at_first_failure(self, inventory: Inventory):
        task = parse_task({
            "fail": {"msg": "{{ item }}"},
            "with": {"items": ["first", "second"]},
        }, Path("test.yml"))
        outcomes = await run_on(inventory, task)
        assert len(outcomes) == 1
        assert outcomes[0].msg == "first"

    @pytest.mark.asyncio
    async def test_sudo_wraps_commands(self, inventory: Inventory):
        factory = RecordingFactory()
        action = ScriptedAction([TaskResponse(TaskStatus.IS_MATCHED)], command="id")
        module = ScriptedModule(action, pre_logic=PreLogicInput(sudo="postgres"))

        await run_on(inventory, module, factory=factory)

        assert factory.connections["web1"].commands == ["sudo -u 'postgres' sh -c id"]

    @pytest.mark.asyncio
    async def test_context_sudo_applies_without_task_sudo(self, inventory: Inventory):
        factory = RecordingFactory()
        action = ScriptedAction([TaskResponse(TaskStatus.IS_MATCHED)], command="whoami")
        context = PlaybookContext(sudo="root")

        await run_on(inventory, ScriptedModule(action), factory=factory, context=context)

        assert factory.connections["web1"].commands == ["sudo -u 'root' sh -c whoami"]

    @pytest.mark.asyncio
    async def test_delegate_to(self, inventory: Inventory):
        action = ScriptedAction([TaskResponse(TaskStatus.IS_MATCHED)])
        module = ScriptedModule(action, pre_logic=PreLogicInput(delegate_to="web2"))
        await run_on(inventory, module)
        assert action.connections == ["web2"]

    @pytest.mark.asyncio
    async def test_skip_if_exists(self, inventory: Inventory):
        """The recording connection reports every ``test`` as true."""
        action = ScriptedAction([TaskResponse(TaskStatus.IS_MATCHED)])
        module = ScriptedModule(action, pre_logic=PreLogicInput(skip_if_exists="/etc/{{ convoy_hostname }}.done"))
        [outcome] = await run_on(inventory, module)
        assert outcome.skipped
        assert outcome.msg == "/etc/web1.done exists"
        assert action.requests == []


class TestPostLogic:
    """Test ``and:`` handling."""

    @pytest.mark.asyncio
    async def test_retry_until_success(self, inventory: Inventory):
        action = ScriptedAction([
            TaskResponse(TaskStatus.FAILED, msg="not yet"),
            TaskResponse(TaskStatus.FAILED, msg="not yet"),
            TaskResponse(TaskStatus.IS_MATCHED),
        ])
        module = ScriptedModule(action, post_logic=PostLogicInput(retry=2, delay=0))
        [outcome] = await run_on(inventory, module)
        assert outcome.status == TaskStatus.IS_MATCHED
        assert len(action.requests) == 3

    @pytest.mark.asyncio
    async def test_retry_exhausted(self, inventory: Inventory):
        action = ScriptedAction([TaskResponse(TaskStatus.FAILED, msg="never")])
        module = ScriptedModule(action, post_logic=PostLogicInput(retry="1", delay="0"))
        [outcome] = await run_on(inventory, module)
        assert outcome.failed
        assert len(action.requests) == 2

    @pytest.mark.asyncio
    async def test_ignore_errors(self, inventory: Inventory):
        action = ScriptedAction([TaskResponse(TaskStatus.FAILED, msg="broken")])
        module = ScriptedModule(action, post_logic=PostLogicInput(ignore_errors=True))
        [outcome] = await run_on(inventory, module)
        assert outcome.ignored
        assert not outcome.failed

    @pytest.mark.asyncio
    async def test_notify_is_attached(self, inventory: Inventory):
        action = ScriptedAction(
            [TaskResponse(TaskStatus.NEEDS_EXECUTION)],
            follow_up=lambda request: TaskResponse(TaskStatus.IS_EXECUTED),
        )
        module = ScriptedModule(action, post_logic=PostLogicInput(notify="restart {{ convoy_hostname_short }}"))
        [outcome] = await run_on(inventory, module)
        assert outcome.changed
        assert outcome.notify == "restart web1"


class TestHandlers:
    """Test handler gating on notifications."""

    @pytest.mark.asyncio
    async def test_handler_skipped_without_notification(self, inventory: Inventory):
        task = parse_task({"name": "restart", "echo": {"msg": "restarting"}}, Path("test.yml"))
        run_state = make_run_state(inventory, factory=RecordingFactory())
        scheduled = ScheduledTask(task=task, handler=True)

        [outcome] = await run_task_on_host(run_state, scheduled, inventory.get_host("web1"))

        assert outcome.skipped
        assert outcome.msg == "handler not notified"

    @pytest.mark.asyncio
    async def test_handler_runs_when_notified(self, inventory: Inventory):
        task = parse_task({"name": "restart", "echo": {"msg": "restarting"}}, Path("test.yml"))
        run_state = make_run_state(inventory, factory=RecordingFactory())
        host = inventory.get_host("web1")
        host.notify(run_state.context.play_count, "restart")

        [outcome] = await run_task_on_host(run_state, ScheduledTask(task=task, handler=True), host)

        assert outcome.status == TaskStatus.IS_PASSIVE

    @pytest.mark.asyncio
    async def test_handler_subscribe(self, inventory: Inventory):
        task = parse_task({
            "name": "reload web server",
            "echo": {"msg": "reloading"},
            "with": {"subscribe": "config changed"},
        }, Path("test.yml"))
        run_state = make_run_state(inventory, factory=RecordingFactory())
        host = inventory.get_host("web1")
        host.notify(run_state.context.play_count, "config changed")

        [outcome] = await run_task_on_host(run_state, ScheduledTask(task=task, handler=True), host)

        assert not outcome.skipped
