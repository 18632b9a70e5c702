"""
Convoy echo module

Print a templated message. Never changes the host.
"""

from convoy.engine.templating import TemplateMode
from convoy.modules.base import Action, EvaluatedTask, Module
from convoy.modules.handle import TaskHandle
from convoy.tasks.request import TaskRequest, TaskRequestType
from convoy.tasks.response import TaskResponse


class EchoModule(Module):
    name = "echo"
    required_args = ["msg"]

    def evaluate(self, handle: TaskHandle, request: TaskRequest, mode: TemplateMode) -> EvaluatedTask:
        msg = handle.template.string(request, mode, "msg", self.get_arg("msg"))
        return self.evaluated(EchoAction(msg), handle, request, mode)


class EchoAction(Action):

    def __init__(self, msg: str):
        self.msg = msg

    async def dispatch(self, handle: TaskHandle, request: TaskRequest) -> TaskResponse:
        if request.request_type == TaskRequestType.QUERY:
            return handle.response.needs_passive(request)
        if request.request_type == TaskRequestType.PASSIVE:
            return handle.response.is_passive(request, msg=self.msg)
        return handle.response.not_supported(request)
