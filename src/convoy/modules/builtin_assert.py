"""
Convoy assert module

Check conditions against the host's variables. A passing assertion is
reported as matched; a failing one fails the host.
"""

from typing import List, Optional

from convoy.engine.templating import TemplateMode
from convoy.modules.base import Action, EvaluatedTask, Module
from convoy.modules.handle import TaskHandle
from convoy.tasks.request import TaskRequest, TaskRequestType
from convoy.tasks.response import TaskResponse


class AssertModule(Module):
    """
    Assert conditions are true.

    ``that`` is a single condition or a list; all must hold.
    """

    name = "assert"
    required_args = ["that"]
    optional_args = ["msg"]

    def evaluate(self, handle: TaskHandle, request: TaskRequest, mode: TemplateMode) -> EvaluatedTask:
        that = self.get_arg("that")
        conditions = [str(c) for c in that] if isinstance(that, list) else [str(that)]

        failed: List[str] = []
        for condition in conditions:
            if not handle.template.test_condition(request, mode, condition):
                failed.append(condition)

        msg = handle.template.string_option(request, mode, "msg", self.get_arg("msg"))
        return self.evaluated(AssertAction(failed, msg), handle, request, mode)


class AssertAction(Action):

    def __init__(self, failed_conditions: List[str], msg: Optional[str] = None):
        self.failed_conditions = failed_conditions
        self.msg = msg

    async def dispatch(self, handle: TaskHandle, request: TaskRequest) -> TaskResponse:
        if request.request_type != TaskRequestType.QUERY:
            return handle.response.not_supported(request)
        if self.failed_conditions:
            message = self.msg or f"assertion failed: {', '.join(self.failed_conditions)}"
            return handle.response.is_failed(request, message)
        return handle.response.is_matched(request)
