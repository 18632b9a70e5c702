"""
Convoy Templating Engine

Jinja2-based templating with strict undefined-variable handling. Modules do
not use this directly; they go through the ``Template`` facility on their
task handle, which supplies the host's blended variables.
"""

import base64
import enum
import json
import os
import re
from typing import Any, Callable, Dict

import yaml
from jinja2 import Environment, StrictUndefined, TemplateSyntaxError, UndefinedError

from convoy.engine.errors import TemplateError


class TemplateMode(enum.Enum):
    """Whether templating is performed."""
    STRICT = "strict"
    # Validation pass: values are returned unrendered
    OFF = "off"


def _filter_to_yaml(value: Any) -> str:
    return yaml.safe_dump(value, default_flow_style=False)


def _filter_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() in ('true', 'yes', '1', 'on')
    return bool(value)


def _filter_b64encode(value: Any) -> str:
    if isinstance(value, bytes):
        return base64.b64encode(value).decode('utf-8')
    return base64.b64encode(str(value).encode('utf-8')).decode('utf-8')


CUSTOM_FILTERS: Dict[str, Callable[..., Any]] = {
    'to_json': lambda x: json.dumps(x),
    'to_yaml': _filter_to_yaml,
    'bool': _filter_bool,
    'basename': lambda p: os.path.basename(str(p)),
    'dirname': lambda p: os.path.dirname(str(p)),
    'regex_replace': lambda value, pattern, repl: re.sub(pattern, repl, str(value)),
    'b64decode': lambda value: base64.b64decode(value).decode('utf-8'),
    'b64encode': _filter_b64encode,
}

TRUE_STRINGS = ('true', 'yes', '1', 'on')
FALSE_STRINGS = ('false', 'no', '0', 'off', '')


class TemplateEngine:
    """
    Jinja2 environment configured for playbook values.

    Undefined variables always raise; there is no lenient mode.
    """

    def __init__(self):
        self.env = Environment(
            undefined=StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )
        for name, func in CUSTOM_FILTERS.items():
            self.env.filters[name] = func

    def render(self, template_str: str, variables: Dict[str, Any]) -> str:
        """
        Render a template string.

        Raises:
            TemplateError: If the template is invalid or a variable is undefined
        """
        if not isinstance(template_str, str):
            return template_str

        # Fast path: no template markers
        if '{{' not in template_str and '{%' not in template_str:
            return template_str

        try:
            return self.env.from_string(template_str).render(variables)
        except UndefinedError as e:
            raise TemplateError(f"Undefined variable: {e}", template=template_str)
        except TemplateSyntaxError as e:
            raise TemplateError(f"Template syntax error: {e}", template=template_str)

    def render_recursive(self, data: Any, variables: Dict[str, Any]) -> Any:
        """Render every string inside nested dicts and lists."""
        if isinstance(data, str):
            return self.render(data, variables)
        if isinstance(data, dict):
            return {k: self.render_recursive(v, variables) for k, v in data.items()}
        if isinstance(data, list):
            return [self.render_recursive(item, variables) for item in data]
        return data

    def evaluate_condition(self, condition: str, variables: Dict[str, Any]) -> bool:
        """
        Evaluate a condition.

        Accepts either a bare expression (``count > 3``) or a templated
        value (``{{ enabled }}``).
        """
        condition = condition.strip()
        if not condition:
            return True
        if '{{' in condition or '{%' in condition:
            return to_bool(self.render(condition, variables))

        try:
            expression = self.env.compile_expression(condition, undefined_to_none=False)
            return to_bool(expression(**variables))
        except UndefinedError as e:
            raise TemplateError(f"Undefined variable: {e}", template=condition)
        except TemplateSyntaxError as e:
            raise TemplateError(f"Condition syntax error: {e}", template=condition)


def to_bool(value: Any) -> bool:
    """Convert a rendered value to a boolean."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.lower().strip()
        if lowered in TRUE_STRINGS:
            return True
        if lowered in FALSE_STRINGS:
            return False
        raise TemplateError(f"expected a boolean, got {value!r}")
    return bool(value)
