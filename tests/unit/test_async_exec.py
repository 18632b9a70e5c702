"""
Tests for async mode: per-host task lists, barriers and the event queue.
"""

from pathlib import Path

import pytest

from conftest import make_run_state
from convoy.engine.async_exec import AsyncExecutionContext
from convoy.engine.async_ui import AsyncUI, HostEvent, HostEventKind
from convoy.engine.barrier import BarrierMode
from convoy.engine.context import PlaybookContext
from convoy.engine.fsm import ScheduledTask
from convoy.engine.playbook import parse_task
from convoy.engine.results import HostOutcome
from convoy.engine.traversal import playbook_traversal
from convoy.engine.visitor import PlaybookVisitor
from convoy.inventory.inventory import Inventory
from convoy.tasks.response import TaskResponse, TaskStatus


def scheduled(data: dict) -> ScheduledTask:
    return ScheduledTask(task=parse_task(data, Path("t.yml")))


def write_playbook(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "site.yml"
    path.write_text(text)
    return path


def outcomes_for(run_state, task_name: str):
    return {o.host: o for o in run_state.visitor.outcomes if o.task_name == task_name}


class TestExecutionContext:
    """Test barrier setup for a flattened task list."""

    def test_one_barrier_per_wait_task(self):
        tasks = [
            scheduled({"echo": {"msg": "a"}}),
            scheduled({"name": "gate", "wait_for_others": {}}),
            scheduled({"echo": {"msg": "b"}}),
            scheduled({"wait_for_others": {"name": "final", "mode": "strict"}}),
        ]
        execution = AsyncExecutionContext.from_tasks(tasks, host_count=4)

        assert execution.barrier_count == 2
        assert execution.get_barrier(0) is None
        assert execution.get_barrier(1).name == "gate"
        assert execution.get_barrier(1).expected_count == 4
        assert execution.get_barrier(1).mode == BarrierMode.LOOSE
        assert execution.get_barrier(3).name == "final"
        assert execution.get_barrier(3).mode == BarrierMode.STRICT

    @pytest.mark.asyncio
    async def test_withdraw_from_later_barriers_only(self):
        tasks = [
            scheduled({"wait_for_others": {"name": "first"}}),
            scheduled({"echo": {"msg": "a"}}),
            scheduled({"wait_for_others": {"name": "second"}}),
        ]
        execution = AsyncExecutionContext.from_tasks(tasks, host_count=3)

        await execution.withdraw_from(1)

        assert execution.get_barrier(0).expected_count == 3
        assert execution.get_barrier(2).expected_count == 2

    @pytest.mark.asyncio
    async def test_withdraw_swallows_barrier_errors(self):
        tasks = [scheduled({"wait_for_others": {"mode": "strict"}})]
        execution = AsyncExecutionContext.from_tasks(tasks, host_count=2)

        await execution.withdraw_from(0)

        assert execution.get_barrier(0).is_poisoned


class TestAsyncUI:
    """Test the single-consumer event queue."""

    @pytest.mark.asyncio
    async def test_outcomes_are_recorded_by_consumer(self):
        context = PlaybookContext()
        ui = AsyncUI(PlaybookVisitor(context, quiet=True), context)
        ui.start()
        outcome = HostOutcome(host="web1", task_name="t", response=TaskResponse(TaskStatus.FAILED, msg="x"))

        ui.emit(HostEvent(HostEventKind.TASK_STARTED, "web1", "t"))
        ui.emit(HostEvent(HostEventKind.TASK_FAILED, "web1", "t", outcome=outcome))
        await ui.stop()

        assert context.host_stats["web1"].failed == 1
        assert context.failed_tasks == 1

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        context = PlaybookContext()
        await AsyncUI(PlaybookVisitor(context, quiet=True), context).stop()


class TestAsyncTraversal:
    """Test async batches end to end."""

    @pytest.mark.asyncio
    async def test_loose_barrier_survives_failed_host(self, tmp_path: Path, web_inventory: Inventory):
        playbook = write_playbook(tmp_path, """
- groups: [web]
  tasks:
    - name: break web3
      fail:
        msg: broken
      with:
        condition: convoy_hostname == 'web3'
    - name: sync
      wait_for_others: {}
    - name: after
      echo:
        msg: done
""")
        run_state = make_run_state(web_inventory, [playbook], async_mode=True, threads=3)

        await playbook_traversal(run_state)

        context = run_state.context
        assert set(context.failed_hosts) == {"web3"}
        for host in ("web1", "web2"):
            assert context.host_stats[host].ok == 2
            assert context.host_stats[host].skipped == 1
        assert set(outcomes_for(run_state, "after")) == {"web1", "web2"}

    @pytest.mark.asyncio
    async def test_strict_barrier_fails_everyone(self, tmp_path: Path, web_inventory: Inventory):
        playbook = write_playbook(tmp_path, """
- groups: [web]
  tasks:
    - name: break web3
      fail: {}
      with:
        condition: convoy_hostname == 'web3'
    - name: sync
      wait_for_others:
        mode: strict
    - name: after
      echo:
        msg: done
""")
        run_state = make_run_state(web_inventory, [playbook], async_mode=True)

        await playbook_traversal(run_state)

        assert set(run_state.context.failed_hosts) == {"web1", "web2", "web3"}
        sync = outcomes_for(run_state, "sync")
        assert sync["web1"].msg == "host withdrew from strict barrier"
        assert outcomes_for(run_state, "after") == {}

    @pytest.mark.asyncio
    async def test_failure_after_barrier_keeps_earlier_barrier(self, tmp_path: Path):
        inventory = Inventory()
        inventory.store_host("web", "web1")
        inventory.store_host("web", "web2")
        playbook = write_playbook(tmp_path, """
- groups: [web]
  tasks:
    - name: first gate
      wait_for_others: {}
    - name: break web2
      fail: {}
      with:
        condition: convoy_hostname == 'web2'
    - name: second gate
      wait_for_others: {}
    - name: after
      echo:
        msg: done
""")
        run_state = make_run_state(inventory, [playbook], async_mode=True, threads=2)

        await playbook_traversal(run_state)

        assert set(run_state.context.failed_hosts) == {"web2"}
        assert run_state.context.host_stats["web1"].ok == 3
        assert set(outcomes_for(run_state, "after")) == {"web1"}

    @pytest.mark.asyncio
    async def test_role_tasks_keep_their_variables(self, tmp_path: Path, web_inventory: Inventory):
        for name in ("alpha", "beta"):
            role_dir = tmp_path / "roles" / name
            (role_dir / "tasks").mkdir(parents=True)
            (role_dir / "role.yml").write_text(f"defaults:\n  greeting: from {name}\ntasks: [main.yml]\n")
            (role_dir / "tasks" / "main.yml").write_text(f"- name: {name} says\n  echo:\n    msg: '{{{{ greeting }}}}'\n")
        playbook = write_playbook(tmp_path, "- groups: [web]\n  roles: [alpha, beta]\n")
        run_state = make_run_state(web_inventory, [playbook], async_mode=True)

        await playbook_traversal(run_state)

        assert outcomes_for(run_state, "alpha says")["web1"].msg == "from alpha"
        assert outcomes_for(run_state, "beta says")["web1"].msg == "from beta"

    @pytest.mark.asyncio
    async def test_tags_apply_in_async_mode(self, tmp_path: Path, web_inventory: Inventory):
        playbook = write_playbook(tmp_path, """
- groups: [web]
  tasks:
    - name: tagged
      echo:
        msg: run
      with:
        tags: [deploy]
    - name: untagged
      echo:
        msg: skip
""")
        run_state = make_run_state(web_inventory, [playbook], async_mode=True, tags=["deploy"])

        await playbook_traversal(run_state)

        stats = run_state.context.host_stats["web2"]
        assert stats.ok == 1
        assert stats.skipped == 1
        assert set(outcomes_for(run_state, "untagged")) == set()

    @pytest.mark.asyncio
    async def test_handlers_run_after_async_batch(self, tmp_path: Path, web_inventory: Inventory):
        playbook = write_playbook(tmp_path, """
- groups: [web]
  tasks:
    - name: change
      shell:
        cmd: deploy
      and:
        notify: restart
  handlers:
    - name: restart
      echo:
        msg: restarting
""")
        run_state = make_run_state(web_inventory, [playbook], async_mode=True)

        await playbook_traversal(run_state)

        restart = outcomes_for(run_state, "restart")
        assert set(restart) == {"web1", "web2", "web3"}
        assert not any(o.skipped for o in restart.values())
