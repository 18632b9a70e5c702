"""
Convoy Task Handle

The handle is everything a module may touch while it runs against one host:

    handle.template   render strings/paths/booleans/integers against the
                      host's blended variables (strict undefined)
    handle.remote     run commands and manipulate files over the connection
    handle.response   build typed TaskResponse outcomes
"""

import logging
from typing import TYPE_CHECKING, Any, Dict, Iterable, Optional, Union

from convoy.engine.errors import ModuleError, TemplateError
from convoy.engine.templating import TemplateEngine, TemplateMode, to_bool
from convoy.modules.remote import Remote
from convoy.tasks.fields import Field
from convoy.tasks.request import TaskRequest, TaskRequestType
from convoy.tasks.response import TaskResponse, TaskStatus

if TYPE_CHECKING:
    from convoy.connections.base import CommandResult, Connection
    from convoy.inventory.host import Host

logger = logging.getLogger(__name__)


class Template:
    """Renders module parameters for one host."""

    def __init__(self, engine: TemplateEngine, variables: Dict[str, Any]):
        self.engine = engine
        self.variables = variables

    def _render(self, mode: TemplateMode, field: str, value: str) -> str:
        if mode == TemplateMode.OFF:
            return value
        try:
            return self.engine.render(value, self.variables)
        except TemplateError as e:
            raise TemplateError(e.reason, template=value, field=field)

    def string(self, request: TaskRequest, mode: TemplateMode, field: str, value: Any) -> str:
        if value is None:
            raise TemplateError("a value is required", field=field)
        return self._render(mode, field, str(value))

    def string_option(self, request: TaskRequest, mode: TemplateMode, field: str, value: Any) -> Optional[str]:
        if value is None:
            return None
        return self.string(request, mode, field, value)

    def string_option_default(
        self, request: TaskRequest, mode: TemplateMode, field: str, value: Any, default: str
    ) -> str:
        if value is None:
            return default
        return self.string(request, mode, field, value)

    def string_no_spaces(self, request: TaskRequest, mode: TemplateMode, field: str, value: Any) -> str:
        rendered = self.string(request, mode, field, value)
        if any(ch.isspace() for ch in rendered):
            raise TemplateError(f"value may not contain spaces: {rendered!r}", field=field)
        return rendered

    def path(self, request: TaskRequest, mode: TemplateMode, field: str, value: Any) -> str:
        rendered = self.string(request, mode, field, value)
        if mode == TemplateMode.STRICT and not rendered.strip():
            raise TemplateError("path may not be empty", field=field)
        return rendered

    def boolean(self, request: TaskRequest, mode: TemplateMode, field: str, value: Union[bool, str, None]) -> bool:
        if isinstance(value, bool):
            return value
        if value is None:
            raise TemplateError("a boolean is required", field=field)
        if mode == TemplateMode.OFF:
            return False
        try:
            return to_bool(self._render(mode, field, str(value)))
        except TemplateError as e:
            raise TemplateError(e.reason, template=str(value), field=field)

    def boolean_option_default(
        self, request: TaskRequest, mode: TemplateMode, field: str, value: Union[bool, str, None], default: bool
    ) -> bool:
        if value is None:
            return default
        return self.boolean(request, mode, field, value)

    def integer(self, request: TaskRequest, mode: TemplateMode, field: str, value: Union[int, str, None]) -> int:
        if isinstance(value, bool):
            raise TemplateError("an integer is required", field=field)
        if isinstance(value, int):
            return value
        if value is None:
            raise TemplateError("an integer is required", field=field)
        if mode == TemplateMode.OFF:
            return 0
        rendered = self._render(mode, field, str(value)).strip()
        try:
            return int(rendered)
        except ValueError:
            raise TemplateError(f"expected an integer, got {rendered!r}", field=field)

    def integer_option(self, request: TaskRequest, mode: TemplateMode, field: str,
                       value: Union[int, str, None]) -> Optional[int]:
        if value is None:
            return None
        return self.integer(request, mode, field, value)

    def integer_option_default(
        self, request: TaskRequest, mode: TemplateMode, field: str, value: Union[int, str, None], default: int
    ) -> int:
        if value is None:
            return default
        return self.integer(request, mode, field, value)

    def mapping(self, request: TaskRequest, mode: TemplateMode, field: str, value: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Render every string inside a mapping."""
        if not value:
            return {}
        if mode == TemplateMode.OFF:
            return dict(value)
        try:
            return self.engine.render_recursive(value, self.variables)
        except TemplateError as e:
            raise TemplateError(e.reason, template=e.template, field=field)

    def test_condition(self, request: TaskRequest, mode: TemplateMode, expression: str) -> bool:
        if mode == TemplateMode.OFF:
            return True
        try:
            return self.engine.evaluate_condition(expression, self.variables)
        except TemplateError as e:
            raise TemplateError(e.reason, template=expression, field="condition")


class Response:
    """Constructors for every TaskResponse outcome."""

    def __init__(self, module_name: str, host_name: str):
        self.module_name = module_name
        self.host_name = host_name

    def _expect(self, request: TaskRequest, *allowed: TaskRequestType) -> None:
        if request.request_type not in allowed:
            raise ModuleError(
                self.module_name,
                self.host_name,
                f"response is not valid for a {request.request_type.value} request",
            )

    def is_matched(self, request: TaskRequest) -> TaskResponse:
        self._expect(request, TaskRequestType.QUERY)
        return TaskResponse(TaskStatus.IS_MATCHED)

    def needs_creation(self, request: TaskRequest) -> TaskResponse:
        self._expect(request, TaskRequestType.QUERY)
        return TaskResponse(TaskStatus.NEEDS_CREATION)

    def needs_modification(self, request: TaskRequest, changes: Iterable[Field]) -> TaskResponse:
        self._expect(request, TaskRequestType.QUERY)
        changes = frozenset(changes)
        if not changes:
            raise ModuleError(self.module_name, self.host_name, "needs_modification requires at least one field")
        return TaskResponse(TaskStatus.NEEDS_MODIFICATION, changes=changes)

    def needs_removal(self, request: TaskRequest) -> TaskResponse:
        self._expect(request, TaskRequestType.QUERY)
        return TaskResponse(TaskStatus.NEEDS_REMOVAL)

    def needs_execution(self, request: TaskRequest) -> TaskResponse:
        self._expect(request, TaskRequestType.QUERY)
        return TaskResponse(TaskStatus.NEEDS_EXECUTION)

    def needs_passive(self, request: TaskRequest) -> TaskResponse:
        self._expect(request, TaskRequestType.QUERY)
        return TaskResponse(TaskStatus.NEEDS_PASSIVE)

    def is_created(self, request: TaskRequest) -> TaskResponse:
        self._expect(request, TaskRequestType.CREATE)
        return TaskResponse(TaskStatus.IS_CREATED)

    def is_modified(self, request: TaskRequest, changes: Iterable[Field]) -> TaskResponse:
        self._expect(request, TaskRequestType.MODIFY)
        return TaskResponse(TaskStatus.IS_MODIFIED, changes=frozenset(changes))

    def is_removed(self, request: TaskRequest) -> TaskResponse:
        self._expect(request, TaskRequestType.REMOVE)
        return TaskResponse(TaskStatus.IS_REMOVED)

    def is_executed(self, request: TaskRequest, result: Optional["CommandResult"] = None) -> TaskResponse:
        self._expect(request, TaskRequestType.EXECUTE)
        return TaskResponse(TaskStatus.IS_EXECUTED, command_result=result)

    def is_passive(self, request: TaskRequest, result: Optional["CommandResult"] = None,
                   msg: Optional[str] = None) -> TaskResponse:
        self._expect(request, TaskRequestType.PASSIVE)
        return TaskResponse(TaskStatus.IS_PASSIVE, msg=msg, command_result=result)

    def is_failed(self, request: TaskRequest, msg: str) -> TaskResponse:
        return TaskResponse(TaskStatus.FAILED, msg=msg)

    def command_failed(self, request: TaskRequest, result: "CommandResult") -> TaskResponse:
        return TaskResponse(
            TaskStatus.FAILED,
            msg=f"command failed with rc={result.rc}",
            command_result=result,
        )

    def not_supported(self, request: TaskRequest) -> TaskResponse:
        return TaskResponse(
            TaskStatus.NOT_SUPPORTED,
            msg=f"{self.module_name} does not support {request.request_type.value} requests",
        )


class TaskHandle:
    """Per-host, per-task view handed to a module."""

    def __init__(
        self,
        module_name: str,
        host: "Host",
        connection: "Connection",
        variables: Dict[str, Any],
        engine: TemplateEngine,
        task_id: int = 0,
        check_mode: bool = False,
    ):
        self.module_name = module_name
        self.host = host
        self.connection = connection
        self.task_id = task_id
        self.check_mode = check_mode
        self.template = Template(engine, variables)
        self.response = Response(module_name, host.name)
        self.remote = Remote(self, engine)

    @property
    def variables(self) -> Dict[str, Any]:
        return self.template.variables

    def update_facts(self, facts: Dict[str, Any]) -> None:
        """Record facts for the host and make them visible to later templating in this task."""
        self.host.update_facts(facts)
        self.template.variables.update(facts)

    def fail(self, message: str) -> ModuleError:
        """Build a ModuleError for this module and host."""
        return ModuleError(self.module_name, self.host.name, message)
