"""
Convoy shell module

Run a shell command on the host. Always executes (outside check mode), so
a shell task is reported as changed unless it fails.
"""

from typing import Optional

from convoy.engine.templating import TemplateMode
from convoy.modules.base import Action, EvaluatedTask, Module
from convoy.modules.handle import TaskHandle
from convoy.tasks.request import TaskRequest, TaskRequestType
from convoy.tasks.response import TaskResponse


class ShellModule(Module):
    """
    Run a command.

    Parameters:
        cmd:          command line, run through ``sh``
        save:         fact name that receives ``{rc, out}``
        failed_when:  condition evaluated with ``rc``/``out`` bound;
                      defaults to a non-zero exit status
        forward:      forward the SSH agent for this command
    """

    name = "shell"
    required_args = ["cmd"]
    optional_args = ["save", "failed_when", "forward"]

    def evaluate(self, handle: TaskHandle, request: TaskRequest, mode: TemplateMode) -> EvaluatedTask:
        template = handle.template
        action = ShellAction(
            cmd=template.string(request, mode, "cmd", self.get_arg("cmd")),
            save=template.string_option(request, mode, "save", self.get_arg("save")),
            failed_when=self.get_arg("failed_when"),
            forward=template.boolean_option_default(request, mode, "forward", self.get_arg("forward"), False),
        )
        return self.evaluated(action, handle, request, mode)


class ShellAction(Action):

    def __init__(self, cmd: str, save: Optional[str] = None, failed_when: Optional[str] = None,
                 forward: bool = False):
        self.cmd = cmd
        self.save = save
        self.failed_when = failed_when
        self.forward = forward

    async def dispatch(self, handle: TaskHandle, request: TaskRequest) -> TaskResponse:
        if request.request_type == TaskRequestType.QUERY:
            return handle.response.needs_execution(request)

        if request.request_type == TaskRequestType.EXECUTE:
            result = await handle.remote.run(request, self.cmd, check_rc=False, forward=self.forward)
            if self.save:
                handle.update_facts({self.save: {'rc': result.rc, 'out': result.out}})

            if self.failed_when is not None:
                variables = dict(handle.variables)
                variables.update({'rc': result.rc, 'out': result.out})
                failed = handle.template.engine.evaluate_condition(str(self.failed_when), variables)
            else:
                failed = not result.success

            if failed:
                return handle.response.command_failed(request, result)
            return handle.response.is_executed(request, result)

        return handle.response.not_supported(request)
