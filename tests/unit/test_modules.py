"""
Tests for the built-in modules, run through the task state machine against
the local machine.
"""

import itertools
import os
from pathlib import Path

import pytest

from conftest import make_run_state
from convoy.connections.local import LocalFactory
from convoy.engine.errors import ParseError
from convoy.engine.fsm import ScheduledTask, run_task_on_host
from convoy.engine.playbook import parse_task
from convoy.engine.traversal import RunState
from convoy.inventory.inventory import Inventory
from convoy.modules.registry import MODULES, list_modules
from convoy.tasks.fields import Field
from convoy.tasks.response import TaskStatus

_task_ids = itertools.count(1)


@pytest.fixture
def run_state(local_inventory: Inventory) -> RunState:
    return make_run_state(local_inventory, factory=LocalFactory(local_inventory))


@pytest.fixture
def check_state(local_inventory: Inventory) -> RunState:
    return make_run_state(local_inventory, factory=LocalFactory(local_inventory), check_mode=True)


async def run(run_state: RunState, data: dict):
    """Parse one task mapping and run it on localhost."""
    task = parse_task(data, Path("test.yml"))
    scheduled = ScheduledTask(task=task, task_id=next(_task_ids))
    host = run_state.inventory.get_host("localhost")
    outcomes = await run_task_on_host(run_state, scheduled, host)
    await run_state.context.connection_cache.clear()
    return outcomes


class TestRegistry:
    """Test the module table."""

    def test_builtin_modules(self):
        assert list_modules() == [
            "assert", "directory", "echo", "facts", "fail", "file", "set", "shell", "wait_for_others",
        ]

    def test_unknown_parameter(self):
        with pytest.raises(ParseError, match="unknown parameters for 'echo': colour"):
            MODULES["echo"]({"msg": "hi", "colour": "red"})

    def test_missing_parameter(self):
        with pytest.raises(ParseError, match="'file' requires parameter 'path'"):
            MODULES["file"]({"content": "x"})


class TestFileModule:
    """Test file idempotence."""

    @pytest.mark.asyncio
    async def test_create_then_match(self, run_state: RunState, tmp_path: Path):
        path = tmp_path / "app.conf"
        task = {"name": "conf", "file": {"path": str(path), "content": "port=80\n"}}

        [created] = await run(run_state, task)
        assert created.status == TaskStatus.IS_CREATED
        assert created.changed
        assert path.read_text() == "port=80\n"

        [matched] = await run(run_state, task)
        assert matched.status == TaskStatus.IS_MATCHED
        assert not matched.changed

    @pytest.mark.asyncio
    async def test_content_change_is_modified(self, run_state: RunState, tmp_path: Path):
        path = tmp_path / "app.conf"
        path.write_text("port=80\n")

        [outcome] = await run(run_state, {"file": {"path": str(path), "content": "port=81\n"}})

        assert outcome.status == TaskStatus.IS_MODIFIED
        assert outcome.response.changes == frozenset({Field.CONTENT})
        assert path.read_text() == "port=81\n"

    @pytest.mark.asyncio
    async def test_mode(self, run_state: RunState, tmp_path: Path):
        path = tmp_path / "secret"
        path.write_text("s3cret")
        os.chmod(path, 0o644)
        task = {"file": {"path": str(path), "content": "s3cret", "mode": "0600"}}

        [outcome] = await run(run_state, task)
        assert outcome.response.changes == frozenset({Field.MODE})
        assert oct(path.stat().st_mode & 0o777) == "0o600"

        [again] = await run(run_state, task)
        assert again.status == TaskStatus.IS_MATCHED

    @pytest.mark.asyncio
    async def test_content_is_templated(self, run_state: RunState, tmp_path: Path):
        path = tmp_path / "motd"
        await run(run_state, {"file": {"path": str(path), "content": "host={{ convoy_hostname }}"}})
        assert path.read_text() == "host=localhost"

    @pytest.mark.asyncio
    async def test_remove(self, run_state: RunState, tmp_path: Path):
        path = tmp_path / "stale"
        path.write_text("x")
        task = {"file": {"path": str(path), "remove": True}}

        [removed] = await run(run_state, task)
        assert removed.status == TaskStatus.IS_REMOVED
        assert not path.exists()

        [matched] = await run(run_state, task)
        assert matched.status == TaskStatus.IS_MATCHED

    @pytest.mark.asyncio
    async def test_directory_in_the_way(self, run_state: RunState, tmp_path: Path):
        [outcome] = await run(run_state, {"file": {"path": str(tmp_path), "content": "x"}})
        assert outcome.failed
        assert "not a regular file" in outcome.msg

    @pytest.mark.asyncio
    async def test_copy_from_src(self, run_state: RunState, tmp_path: Path):
        src = tmp_path / "src.txt"
        src.write_text("payload")
        dest = tmp_path / "dest.txt"
        task = {"file": {"path": str(dest), "src": str(src)}}

        [created] = await run(run_state, task)
        assert created.status == TaskStatus.IS_CREATED
        assert dest.read_text() == "payload"

        [matched] = await run(run_state, task)
        assert matched.status == TaskStatus.IS_MATCHED

    @pytest.mark.asyncio
    async def test_content_and_src_are_exclusive(self, run_state: RunState, tmp_path: Path):
        [outcome] = await run(run_state, {"file": {"path": str(tmp_path / "f"), "content": "a", "src": "/etc/hosts"}})
        assert outcome.failed
        assert "mutually exclusive" in outcome.msg

    @pytest.mark.asyncio
    async def test_check_mode_does_not_write(self, check_state: RunState, tmp_path: Path):
        path = tmp_path / "app.conf"

        [outcome] = await run(check_state, {"file": {"path": str(path), "content": "x"}})

        assert outcome.status == TaskStatus.NEEDS_CREATION
        assert not path.exists()

    @pytest.mark.asyncio
    async def test_check_mode_reports_modification(self, check_state: RunState, tmp_path: Path):
        path = tmp_path / "app.conf"
        path.write_text("old")

        [outcome] = await run(check_state, {"file": {"path": str(path), "content": "new"}})

        assert outcome.status == TaskStatus.NEEDS_MODIFICATION
        assert path.read_text() == "old"


class TestDirectoryModule:
    """Test directory idempotence."""

    @pytest.mark.asyncio
    async def test_create_then_match(self, run_state: RunState, tmp_path: Path):
        path = tmp_path / "a" / "b"
        task = {"directory": {"path": str(path), "mode": "0750"}}

        [created] = await run(run_state, task)
        assert created.status == TaskStatus.IS_CREATED
        assert path.is_dir()
        assert oct(path.stat().st_mode & 0o777) == "0o750"

        [matched] = await run(run_state, task)
        assert matched.status == TaskStatus.IS_MATCHED

    @pytest.mark.asyncio
    async def test_mode_change(self, run_state: RunState, tmp_path: Path):
        path = tmp_path / "data"
        path.mkdir(mode=0o755)
        os.chmod(path, 0o755)

        [outcome] = await run(run_state, {"directory": {"path": str(path), "mode": "700"}})

        assert outcome.status == TaskStatus.IS_MODIFIED
        assert outcome.response.changes == frozenset({Field.MODE})

    @pytest.mark.asyncio
    async def test_remove_recursive(self, run_state: RunState, tmp_path: Path):
        path = tmp_path / "cache"
        (path / "nested").mkdir(parents=True)
        task = {"directory": {"path": str(path), "remove": True, "recurse": True}}

        [removed] = await run(run_state, task)
        assert removed.status == TaskStatus.IS_REMOVED
        assert not path.exists()

        [matched] = await run(run_state, task)
        assert matched.status == TaskStatus.IS_MATCHED

    @pytest.mark.asyncio
    async def test_file_in_the_way(self, run_state: RunState, tmp_path: Path):
        path = tmp_path / "plain"
        path.write_text("x")
        [outcome] = await run(run_state, {"directory": {"path": str(path)}})
        assert outcome.failed
        assert "not a directory" in outcome.msg

    @pytest.mark.asyncio
    async def test_check_mode_does_not_create(self, check_state: RunState, tmp_path: Path):
        path = tmp_path / "new"
        [outcome] = await run(check_state, {"directory": {"path": str(path)}})
        assert outcome.status == TaskStatus.NEEDS_CREATION
        assert not path.exists()


class TestShellModule:
    """Test command execution."""

    @pytest.mark.asyncio
    async def test_success_is_changed(self, run_state: RunState):
        [outcome] = await run(run_state, {"shell": {"cmd": "echo hi"}})
        assert outcome.status == TaskStatus.IS_EXECUTED
        assert outcome.changed
        assert outcome.command_result.out == "hi\n"

    @pytest.mark.asyncio
    async def test_non_zero_exit_fails(self, run_state: RunState):
        [outcome] = await run(run_state, {"shell": {"cmd": "echo broken; exit 3"}})
        assert outcome.failed
        assert outcome.command_result.rc == 3
        assert outcome.msg == "command failed with rc=3"

    @pytest.mark.asyncio
    async def test_failed_when(self, run_state: RunState):
        [outcome] = await run(run_state, {"shell": {"cmd": "exit 3", "failed_when": "rc != 3"}})
        assert outcome.status == TaskStatus.IS_EXECUTED

        [outcome] = await run(run_state, {"shell": {"cmd": "echo ERROR", "failed_when": "'ERROR' in out"}})
        assert outcome.failed

    @pytest.mark.asyncio
    async def test_save(self, run_state: RunState):
        await run(run_state, {"shell": {"cmd": "echo 42", "save": "answer"}})
        host = run_state.inventory.get_host("localhost")
        assert host.facts["answer"] == {"rc": 0, "out": "42\n"}

    @pytest.mark.asyncio
    async def test_check_mode_does_not_execute(self, check_state: RunState, tmp_path: Path):
        marker = tmp_path / "ran"
        [outcome] = await run(check_state, {"shell": {"cmd": f"touch {marker}"}})
        assert outcome.status == TaskStatus.NEEDS_EXECUTION
        assert not marker.exists()


class TestPassiveModules:
    """Test echo, set, facts, assert and fail."""

    @pytest.mark.asyncio
    async def test_echo(self, run_state: RunState):
        [outcome] = await run(run_state, {"echo": {"msg": "hello {{ convoy_hostname_short }}"}})
        assert outcome.status == TaskStatus.IS_PASSIVE
        assert outcome.msg == "hello localhost"

    @pytest.mark.asyncio
    async def test_set_then_use(self, run_state: RunState):
        await run(run_state, {"set": {"release": "{{ 40 + 2 }}", "channel": "stable"}})
        [outcome] = await run(run_state, {"echo": {"msg": "{{ channel }}-{{ release }}"}})
        assert outcome.msg == "stable-42"

    @pytest.mark.asyncio
    async def test_facts(self, run_state: RunState):
        [outcome] = await run(run_state, {"facts": {}})
        facts = run_state.inventory.get_host("localhost").facts
        assert outcome.status == TaskStatus.IS_PASSIVE
        assert facts["convoy_os_type"] in ("Linux", "MacOS")
        assert facts["convoy_whoami"]

    @pytest.mark.asyncio
    async def test_assert(self, run_state: RunState):
        run_state.context.push_extra_vars({"workers": 4})

        [passed] = await run(run_state, {"assert": {"that": ["workers > 2", "workers < 8"]}})
        assert passed.status == TaskStatus.IS_MATCHED

        [failed] = await run(run_state, {"assert": {"that": "workers > 5"}})
        assert failed.failed
        assert failed.msg == "assertion failed: workers > 5"

    @pytest.mark.asyncio
    async def test_fail(self, run_state: RunState):
        [outcome] = await run(run_state, {"fail": {"msg": "stop on {{ convoy_hostname }}"}})
        assert outcome.failed
        assert outcome.msg == "stop on localhost"

    @pytest.mark.asyncio
    async def test_wait_for_others_is_passive_outside_async(self, run_state: RunState):
        [outcome] = await run(run_state, {"wait_for_others": {}})
        assert outcome.status == TaskStatus.IS_PASSIVE

    def test_wait_for_others_mode(self):
        with pytest.raises(ParseError, match="must be 'loose' or 'strict'"):
            MODULES["wait_for_others"]({"mode": "eventually"})
