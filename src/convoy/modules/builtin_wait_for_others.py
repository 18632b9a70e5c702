"""
Convoy wait_for_others module

A rendezvous point for the hosts of a batch. In async mode the executor
blocks each host on a countdown barrier before this task runs; outside
async mode the task is a pass-through.
"""

from convoy.engine.barrier import BarrierMode
from convoy.engine.errors import ParseError
from convoy.engine.templating import TemplateMode
from convoy.modules.base import Action, EvaluatedTask, Module
from convoy.modules.handle import TaskHandle
from convoy.tasks.request import TaskRequest, TaskRequestType
from convoy.tasks.response import TaskResponse

MODULE_NAME = "wait_for_others"


class WaitForOthersModule(Module):
    """
    Parameters:
        name:  label shown in progress output
        mode:  "loose" (default) or "strict"
    """

    name = MODULE_NAME
    optional_args = ["name", "mode"]

    @classmethod
    def from_dict(cls, params, label=None, pre_logic=None, post_logic=None):
        module = super().from_dict(params, label=label, pre_logic=pre_logic, post_logic=post_logic)
        module.barrier_mode()
        return module

    def barrier_name(self) -> str:
        return str(self.get_arg("name") or self.label or MODULE_NAME)

    def barrier_mode(self) -> BarrierMode:
        value = str(self.get_arg("mode", BarrierMode.LOOSE.value)).lower()
        try:
            return BarrierMode(value)
        except ValueError:
            raise ParseError(f"wait_for_others mode must be 'loose' or 'strict', got {value!r}")

    def evaluate(self, handle: TaskHandle, request: TaskRequest, mode: TemplateMode) -> EvaluatedTask:
        return self.evaluated(WaitForOthersAction(), handle, request, mode)


class WaitForOthersAction(Action):

    async def dispatch(self, handle: TaskHandle, request: TaskRequest) -> TaskResponse:
        if request.request_type == TaskRequestType.QUERY:
            return handle.response.needs_passive(request)
        if request.request_type == TaskRequestType.PASSIVE:
            return handle.response.is_passive(request)
        return handle.response.not_supported(request)
