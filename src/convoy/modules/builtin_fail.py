"""
Convoy fail module

Fail the host with a message. Usually paired with a ``condition``.
"""

from convoy.engine.templating import TemplateMode
from convoy.modules.base import Action, EvaluatedTask, Module
from convoy.modules.handle import TaskHandle
from convoy.tasks.request import TaskRequest
from convoy.tasks.response import TaskResponse

DEFAULT_MESSAGE = "failed as requested"


class FailModule(Module):
    name = "fail"
    optional_args = ["msg"]

    def evaluate(self, handle: TaskHandle, request: TaskRequest, mode: TemplateMode) -> EvaluatedTask:
        msg = handle.template.string_option_default(request, mode, "msg", self.get_arg("msg"), DEFAULT_MESSAGE)
        return self.evaluated(FailAction(msg), handle, request, mode)


class FailAction(Action):

    def __init__(self, msg: str):
        self.msg = msg

    async def dispatch(self, handle: TaskHandle, request: TaskRequest) -> TaskResponse:
        return handle.response.is_failed(request, self.msg)
