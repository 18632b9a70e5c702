"""
Convoy Module Base

Every task module is a ``Module`` subclass registered by name in
``convoy.modules.registry.MODULES``. A module parses its YAML parameters
once, then for each host ``evaluate`` templates them into an ``Action`` that
the state machine dispatches phase by phase.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from convoy.engine.errors import ParseError
from convoy.engine.templating import TemplateMode
from convoy.modules.handle import TaskHandle
from convoy.tasks.logic import PostLogicEvaluated, PostLogicInput, PreLogicEvaluated, PreLogicInput
from convoy.tasks.request import TaskRequest
from convoy.tasks.response import TaskResponse


class Action(ABC):
    """Templated, per-host form of a module, ready to dispatch."""

    @abstractmethod
    async def dispatch(self, handle: TaskHandle, request: TaskRequest) -> TaskResponse:
        """
        Run one state machine phase.

        Query must not change the host. Mutating phases must only do the
        work Query reported as needed.
        """


@dataclass
class EvaluatedTask:
    action: Action
    with_logic: Optional[PreLogicEvaluated] = None
    and_logic: Optional[PostLogicEvaluated] = None


class Module(ABC):
    """
    Base class for all task modules.

    Subclasses set ``name``, list the parameter keys they accept and
    implement ``evaluate``.
    """

    # Module key used in playbook YAML
    name: str = ""

    required_args: List[str] = []
    optional_args: List[str] = []
    # Accept any parameter key (e.g. variable names for "set")
    free_form: bool = False

    def __init__(
        self,
        params: Dict[str, Any],
        label: Optional[str] = None,
        pre_logic: Optional[PreLogicInput] = None,
        post_logic: Optional[PostLogicInput] = None,
    ):
        self.params = params
        self.label = label
        self.pre_logic = pre_logic
        self.post_logic = post_logic

    @classmethod
    def from_dict(
        cls,
        params: Optional[Dict[str, Any]],
        label: Optional[str] = None,
        pre_logic: Optional[PreLogicInput] = None,
        post_logic: Optional[PostLogicInput] = None,
    ) -> "Module":
        """
        Build the module from its YAML parameter mapping.

        Raises:
            ParseError: On unknown or missing parameters
        """
        params = params or {}
        if not isinstance(params, dict):
            raise ParseError(f"parameters for '{cls.name}' must be a mapping")
        allowed = set(cls.required_args) | set(cls.optional_args)
        unknown = set(params) - allowed
        if unknown and not cls.free_form:
            raise ParseError(f"unknown parameters for '{cls.name}': {', '.join(sorted(unknown))}")
        for required in cls.required_args:
            if required not in params:
                raise ParseError(f"'{cls.name}' requires parameter '{required}'")
        return cls(params, label=label, pre_logic=pre_logic, post_logic=post_logic)

    def get_module(self) -> str:
        return self.name

    def get_name(self) -> Optional[str]:
        return self.label

    def get_with(self) -> Optional[PreLogicInput]:
        return self.pre_logic

    def get_and(self) -> Optional[PostLogicInput]:
        return self.post_logic

    def get_arg(self, name: str, default: Any = None) -> Any:
        return self.params.get(name, default)

    def evaluated(
        self,
        action: Action,
        handle: TaskHandle,
        request: TaskRequest,
        mode: TemplateMode,
    ) -> EvaluatedTask:
        """Pair an action with this task's evaluated ``with``/``and`` blocks."""
        template = handle.template
        return EvaluatedTask(
            action=action,
            with_logic=self.pre_logic.evaluate(template, request, mode) if self.pre_logic else None,
            and_logic=self.post_logic.evaluate(template, request, mode) if self.post_logic else None,
        )

    @abstractmethod
    def evaluate(self, handle: TaskHandle, request: TaskRequest, mode: TemplateMode) -> EvaluatedTask:
        """
        Template the parameters for one host.

        Raises:
            TemplateError: If a value fails to render
            ModuleError: If a rendered value is invalid
        """
