"""
Task pre-logic (``with:``) and post-logic (``and:``) blocks.

Input classes hold the raw YAML values; evaluated classes hold values after
templating against the current host's variables.
"""

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

from convoy.engine.errors import ParseError
from convoy.engine.templating import TemplateMode
from convoy.tasks.request import TaskRequest

if TYPE_CHECKING:
    from convoy.modules.handle import Template

PRE_LOGIC_KEYS = {'condition', 'subscribe', 'sudo', 'items', 'tags', 'delegate_to', 'skip_if_exists'}
POST_LOGIC_KEYS = {'notify', 'ignore_errors', 'retry', 'delay'}

# Paths tested on the remote host are interpolated into shell commands
ILLEGAL_PATH_CHARS = re.compile(r'[;&|`$<>(){}\[\]*?!\\"\'\n]')

DEFAULT_RETRY = 0
DEFAULT_DELAY = 1


@dataclass
class ItemsInput:
    """
    Loop source for a task.

    Either the name of a variable that holds a list, or an explicit list
    whose entries are templated individually.
    """
    variable: Optional[str] = None
    values: Optional[List[Any]] = None

    @classmethod
    def from_value(cls, value: Any) -> "ItemsInput":
        if isinstance(value, str):
            return cls(variable=value.strip())
        if isinstance(value, list):
            return cls(values=list(value))
        raise ParseError(f"'items' must be a variable name or a list, got {type(value).__name__}")


@dataclass
class PreLogicInput:
    condition: Optional[str] = None
    subscribe: Optional[str] = None
    sudo: Optional[str] = None
    items: Optional[ItemsInput] = None
    tags: List[str] = field(default_factory=list)
    delegate_to: Optional[str] = None
    skip_if_exists: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["PreLogicInput"]:
        if data is None:
            return None
        if not isinstance(data, dict):
            raise ParseError("'with' must be a mapping")
        unknown = set(data) - PRE_LOGIC_KEYS
        if unknown:
            raise ParseError(f"unknown keys in 'with': {', '.join(sorted(unknown))}")
        tags = data.get('tags') or []
        if isinstance(tags, str):
            tags = [tags]
        condition = data.get('condition')
        return cls(
            condition=str(condition) if condition is not None else None,
            subscribe=_optional_str(data.get('subscribe')),
            sudo=_optional_str(data.get('sudo')),
            items=ItemsInput.from_value(data['items']) if data.get('items') is not None else None,
            tags=[str(tag) for tag in tags],
            delegate_to=_optional_str(data.get('delegate_to')),
            skip_if_exists=_optional_str(data.get('skip_if_exists')),
        )

    def evaluate(self, template: "Template", request: TaskRequest, mode: "TemplateMode") -> "PreLogicEvaluated":
        condition = True
        if self.condition is not None:
            condition = template.test_condition(request, mode, self.condition)
        skip_path = None
        if self.skip_if_exists is not None:
            skip_path = template.path(request, mode, "skip_if_exists", self.skip_if_exists)
            if mode == TemplateMode.STRICT and ILLEGAL_PATH_CHARS.search(skip_path):
                raise ParseError(f"skip_if_exists path contains illegal characters: {skip_path!r}")
        return PreLogicEvaluated(
            condition=condition,
            subscribe=template.string_option(request, mode, "subscribe", self.subscribe),
            sudo=template.string_option(request, mode, "sudo", self.sudo),
            items=self.items,
            tags=list(self.tags),
            delegate_to=template.string_option(request, mode, "delegate_to", self.delegate_to),
            skip_if_exists=skip_path,
        )


@dataclass
class PreLogicEvaluated:
    condition: bool = True
    subscribe: Optional[str] = None
    sudo: Optional[str] = None
    items: Optional[ItemsInput] = None
    tags: List[str] = field(default_factory=list)
    delegate_to: Optional[str] = None
    skip_if_exists: Optional[str] = None


@dataclass
class PostLogicInput:
    notify: Optional[str] = None
    ignore_errors: Optional[Union[str, bool]] = None
    retry: Optional[Union[str, int]] = None
    delay: Optional[Union[str, int]] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["PostLogicInput"]:
        if data is None:
            return None
        if not isinstance(data, dict):
            raise ParseError("'and' must be a mapping")
        unknown = set(data) - POST_LOGIC_KEYS
        if unknown:
            raise ParseError(f"unknown keys in 'and': {', '.join(sorted(unknown))}")
        return cls(
            notify=_optional_str(data.get('notify')),
            ignore_errors=data.get('ignore_errors'),
            retry=data.get('retry'),
            delay=data.get('delay'),
        )

    def evaluate(self, template: "Template", request: TaskRequest, mode: "TemplateMode") -> "PostLogicEvaluated":
        return PostLogicEvaluated(
            notify=template.string_option(request, mode, "notify", self.notify),
            ignore_errors=template.boolean_option_default(request, mode, "ignore_errors", self.ignore_errors, False),
            retry=template.integer_option_default(request, mode, "retry", self.retry, DEFAULT_RETRY),
            delay=template.integer_option_default(request, mode, "delay", self.delay, DEFAULT_DELAY),
        )


@dataclass
class PostLogicEvaluated:
    notify: Optional[str] = None
    ignore_errors: bool = False
    retry: int = DEFAULT_RETRY
    delay: int = DEFAULT_DELAY


def _optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)
