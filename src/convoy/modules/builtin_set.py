"""
Convoy set module

Store templated values as host facts so later tasks can reference them.
"""

from typing import Any, Dict

from convoy.engine.templating import TemplateMode
from convoy.modules.base import Action, EvaluatedTask, Module
from convoy.modules.handle import TaskHandle
from convoy.tasks.request import TaskRequest, TaskRequestType
from convoy.tasks.response import TaskResponse


class SetModule(Module):
    """
    Set variables on the host.

    Every parameter key becomes a fact:

        - name: remember the release
          set:
            release: "{{ version }}-{{ build }}"
    """

    name = "set"
    free_form = True

    def evaluate(self, handle: TaskHandle, request: TaskRequest, mode: TemplateMode) -> EvaluatedTask:
        values = handle.template.mapping(request, mode, "set", self.params)
        return self.evaluated(SetAction(values), handle, request, mode)


class SetAction(Action):

    def __init__(self, values: Dict[str, Any]):
        self.values = values

    async def dispatch(self, handle: TaskHandle, request: TaskRequest) -> TaskResponse:
        if request.request_type == TaskRequestType.QUERY:
            return handle.response.needs_passive(request)
        if request.request_type == TaskRequestType.PASSIVE:
            handle.update_facts(self.values)
            return handle.response.is_passive(request)
        return handle.response.not_supported(request)
