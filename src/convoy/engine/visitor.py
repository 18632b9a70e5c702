"""
Convoy Playbook Visitor

Everything the user sees during a run: play/task banners, per-host result
lines, failure details and the final recap. Optionally appends one JSON
record per event to a log file (``CONVOY_LOG`` or ``RunConfig.log_path``).

In sync mode the traversal calls the visitor directly; in async mode the
AsyncUI consumer is the only caller.
"""

import datetime
import json
import logging
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

from convoy.engine.context import PlaybookContext
from convoy.engine.results import HostOutcome
from convoy.tasks.response import CHANGED_STATUSES, EXPECTED_COMPLETION

if TYPE_CHECKING:
    from convoy.engine.async_ui import HostEvent
    from convoy.engine.playbook import Play
    from convoy.inventory.host import Host

logger = logging.getLogger(__name__)

LOG_ENV = "CONVOY_LOG"

GREEN = '\033[32m'
YELLOW = '\033[33m'
RED = '\033[31m'
CYAN = '\033[36m'
BLUE = '\033[34m'
RESET = '\033[0m'

_STATUS_COLORS = {
    'ok': GREEN,
    'changed': YELLOW,
    'failed': RED,
    'skipped': CYAN,
    'ignored': BLUE,
    'unreachable': RED,
}


def describe_outcome(outcome: HostOutcome) -> str:
    """Short status word for a result line."""
    if outcome.skipped:
        return 'skipped'
    if outcome.unreachable:
        return 'unreachable'
    if outcome.ignored:
        return 'ignored'
    if outcome.failed:
        return 'failed'
    if outcome.changed:
        return 'changed'
    # Check mode stops at Query
    if EXPECTED_COMPLETION.get(outcome.status) in CHANGED_STATUSES:
        return 'changed'
    return 'ok'


class PlaybookVisitor:
    """Console output and event log for one run."""

    def __init__(
        self,
        context: PlaybookContext,
        log_path: Optional[Union[str, Path]] = None,
        quiet: bool = False,
        check_mode: bool = False,
    ):
        self.context = context
        self.quiet = quiet
        self.check_mode = check_mode
        log_path = log_path or os.environ.get(LOG_ENV)
        self.log_path = Path(log_path) if log_path else None

    # Console output

    def _print(self, msg: str = "") -> None:
        if not self.quiet:
            print(msg)

    def _print_error(self, msg: str) -> None:
        if not self.quiet:
            print(f"{RED}{msg}{RESET}", file=sys.stderr)

    def on_playbook_start(self, path: Path) -> None:
        self._print(f"\nPLAYBOOK [{path}] " + "=" * 50)
        self.log_event("playbook_start")

    def on_play_start(self, play: "Play") -> None:
        self._print(f"\nPLAY [{play.name}] " + "*" * 50)
        self.log_event("play_start")

    def on_batch_start(self, batch_number: int, batch_count: int, hosts: List["Host"]) -> None:
        if batch_count > 1:
            names = ", ".join(host.name for host in hosts)
            self._print(f"\nBATCH [{batch_number}/{batch_count}] {names}")
        self.log_event("batch_start", summary=f"{batch_number}/{batch_count}")

    def on_role_start(self, role: str) -> None:
        self._print(f"\nROLE [{role}] " + "~" * 50)
        self.log_event("role_start")

    def on_task_start(self, task_name: str, handler: bool = False) -> None:
        kind = "HANDLER" if handler else "TASK"
        self._print(f"\n{kind} [{task_name}] " + "-" * 50)
        self.log_event("task_start")

    def on_host_outcome(self, outcome: HostOutcome) -> None:
        """Print one host's result for the current task."""
        status = describe_outcome(outcome)
        color = _STATUS_COLORS.get(status, '')
        label = status
        if self.check_mode and status == 'changed':
            label = 'would change'
        msg = outcome.msg
        if msg and status not in ('failed', 'unreachable'):
            self._print(f"{color}{label}: [{outcome.host}]{RESET} => {msg}")
        else:
            self._print(f"{color}{label}: [{outcome.host}]{RESET}")

        if status in ('failed', 'unreachable', 'ignored'):
            self.on_failure(outcome)

        cmd = outcome.command_result
        self.log_event(
            "host_result",
            host=outcome.host,
            task=outcome.task_name,
            cmd=cmd.cmd if cmd else None,
            cmd_rc=cmd.rc if cmd else None,
            cmd_out=cmd.out if cmd else None,
            task_status=outcome.status.value if outcome.status else status,
            summary=outcome.msg or None,
        )

    def on_failure(self, outcome: HostOutcome) -> None:
        """Failure detail at the point of failure: task, host, message and command output."""
        self._print_error(f"  task: {outcome.task_name}")
        self._print_error(f"  host: {outcome.host}")
        if outcome.msg:
            self._print_error(f"  msg:  {outcome.msg}")
        cmd = outcome.command_result
        if cmd is not None:
            self._print_error(f"  cmd:  {cmd.cmd}")
            self._print_error(f"  rc:   {cmd.rc}")
            for line in cmd.out.rstrip().splitlines():
                self._print_error(f"  | {line}")

    def on_task_skipped_by_tags(self, task_name: str, hosts: List["Host"]) -> None:
        logger.debug("task %s skipped by tags on %d hosts", task_name, len(hosts))
        self.log_event("task_skipped", task=task_name, summary="tags did not match")

    def on_host_unreachable(self, host: "Host", message: str) -> None:
        self._print(f"{RED}unreachable: [{host.name}]{RESET} => {message}")
        self.log_event("host_unreachable", host=host.name, summary=message)

    def on_host_event(self, event: "HostEvent") -> None:
        """Render an async-mode progress event."""
        from convoy.engine.async_ui import HostEventKind

        if event.outcome is not None:
            self.on_host_outcome(event.outcome)
            return

        if event.kind == HostEventKind.TASK_STARTED:
            logger.info("[%s] starting %s", event.host, event.task_name)
        elif event.kind == HostEventKind.BARRIER_REACHED:
            self._print(f"{CYAN}waiting: [{event.host}]{RESET} => {event.barrier}")
        elif event.kind == HostEventKind.BARRIER_PASSED:
            logger.info("[%s] passed barrier %s", event.host, event.barrier)
        elif event.kind == HostEventKind.BARRIER_FAILED:
            self._print(f"{RED}barrier failed: [{event.host}]{RESET} => {event.message}")
        elif event.kind == HostEventKind.HOST_COMPLETED:
            self._print(f"{GREEN}done: [{event.host}]{RESET}")
        elif event.kind == HostEventKind.HOST_FAILED:
            self._print(f"{RED}stopped: [{event.host}]{RESET} => {event.message}")

        self.log_event(
            event.kind.value,
            host=event.host,
            task=event.task_name,
            summary=event.message or event.barrier,
        )

    def on_error(self, message: str) -> None:
        self._print_error(message)
        self.log_event("error", summary=message)

    def on_recap(self) -> None:
        """Print final recap."""
        self._print("\nPLAY RECAP " + "*" * 60)

        for host, stats in sorted(self.context.host_stats.items()):
            parts = [f"{GREEN}ok={stats.ok}{RESET}"]
            if stats.changed:
                parts.append(f"{YELLOW}changed={stats.changed}{RESET}")
            if stats.failed:
                parts.append(f"{RED}failed={stats.failed}{RESET}")
            if stats.skipped:
                parts.append(f"{CYAN}skipped={stats.skipped}{RESET}")
            if stats.ignored:
                parts.append(f"{BLUE}ignored={stats.ignored}{RESET}")
            if stats.unreachable:
                parts.append(f"{RED}unreachable={stats.unreachable}{RESET}")
            self._print(f"{host:40} : " + "  ".join(parts))

        self.log_event(
            "recap",
            summary=json.dumps({h: s.to_dict() for h, s in sorted(self.context.host_stats.items())}),
        )

    # Event log

    def build_record(self, event: str, **fields: Any) -> Dict[str, Any]:
        context = self.context
        record: Dict[str, Any] = {
            "utc": datetime.datetime.now(datetime.timezone.utc).isoformat(),
            "run_id": context.run_id,
            "event": event,
            "playbook_path": context.playbook_path,
            "play": context.play,
            "role": context.role,
            "task": context.task,
            "task_ct": context.task_count,
            "host": None,
            "cmd": None,
            "cmd_rc": None,
            "cmd_out": None,
            "task_status": None,
            "summary": None,
        }
        record.update(fields)
        return record

    def log_event(self, event: str, **fields: Any) -> None:
        if self.log_path is None:
            return
        record = self.build_record(event, **fields)
        with open(self.log_path, 'a', encoding='utf-8') as f:
            f.write(json.dumps(record, default=str) + "\n")
