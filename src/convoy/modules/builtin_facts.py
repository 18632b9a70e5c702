"""
Convoy facts module

Gather basic facts about the host.
"""

from convoy.engine.templating import TemplateMode
from convoy.modules.base import Action, EvaluatedTask, Module
from convoy.modules.handle import TaskHandle
from convoy.tasks.request import TaskRequest, TaskRequestType
from convoy.tasks.response import TaskResponse


class FactsModule(Module):
    name = "facts"

    def evaluate(self, handle: TaskHandle, request: TaskRequest, mode: TemplateMode) -> EvaluatedTask:
        return self.evaluated(FactsAction(), handle, request, mode)


class FactsAction(Action):

    async def dispatch(self, handle: TaskHandle, request: TaskRequest) -> TaskResponse:
        if request.request_type == TaskRequestType.QUERY:
            return handle.response.needs_passive(request)

        if request.request_type == TaskRequestType.PASSIVE:
            uname = await handle.remote.run(request, "uname -a")
            hostname = await handle.remote.run(request, "uname -n")
            whoami = await handle.remote.get_whoami()
            os_type = handle.host.os_type
            handle.update_facts({
                'convoy_uname': uname.out.strip(),
                'convoy_os_type': os_type.value if os_type else None,
                'convoy_remote_hostname': hostname.out.strip(),
                'convoy_whoami': whoami,
            })
            return handle.response.is_passive(request)

        return handle.response.not_supported(request)
