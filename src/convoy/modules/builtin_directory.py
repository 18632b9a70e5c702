"""
Convoy directory module

Ensure a directory exists (optionally with a mode), or is absent.
"""

from typing import Optional

from convoy.engine.templating import TemplateMode
from convoy.modules.base import Action, EvaluatedTask, Module
from convoy.modules.handle import TaskHandle
from convoy.tasks.fields import Field
from convoy.tasks.request import TaskRequest, TaskRequestType
from convoy.tasks.response import TaskResponse


class DirectoryModule(Module):
    """
    Manage a directory.

    Parameters:
        path:     directory path on the host
        mode:     octal permissions, e.g. "0755"
        remove:   ensure the directory is absent
        recurse:  with ``remove``, delete contents too
    """

    name = "directory"
    required_args = ["path"]
    optional_args = ["mode", "remove", "recurse"]

    def evaluate(self, handle: TaskHandle, request: TaskRequest, mode: TemplateMode) -> EvaluatedTask:
        template = handle.template
        action = DirectoryAction(
            path=template.path(request, mode, "path", self.get_arg("path")),
            mode=template.string_option(request, mode, "mode", self.get_arg("mode")),
            remove=template.boolean_option_default(request, mode, "remove", self.get_arg("remove"), False),
            recurse=template.boolean_option_default(request, mode, "recurse", self.get_arg("recurse"), False),
        )
        return self.evaluated(action, handle, request, mode)


def normalize_mode(mode: Optional[str]) -> Optional[str]:
    """Strip leading zeros so "0755" compares equal to stat's "755"."""
    if mode is None:
        return None
    return mode.lstrip('0') or '0'


class DirectoryAction(Action):

    def __init__(self, path: str, mode: Optional[str] = None, remove: bool = False, recurse: bool = False):
        self.path = path
        self.mode = mode
        self.remove = remove
        self.recurse = recurse

    async def dispatch(self, handle: TaskHandle, request: TaskRequest) -> TaskResponse:
        remote = handle.remote
        response = handle.response

        if request.request_type == TaskRequestType.QUERY:
            exists = await remote.file_exists(request, self.path)
            if self.remove:
                return response.needs_removal(request) if exists else response.is_matched(request)
            if not exists:
                return response.needs_creation(request)
            if not await remote.is_directory(request, self.path):
                return response.is_failed(request, f"{self.path} exists and is not a directory")
            if self.mode is not None:
                actual = await remote.get_mode(request, self.path)
                if normalize_mode(actual) != normalize_mode(self.mode):
                    return response.needs_modification(request, [Field.MODE])
            return response.is_matched(request)

        if request.request_type == TaskRequestType.CREATE:
            await remote.create_directory(request, self.path)
            if self.mode is not None:
                await remote.set_mode(request, self.path, self.mode)
            return response.is_created(request)

        if request.request_type == TaskRequestType.MODIFY:
            if Field.MODE in request.changes:
                await remote.set_mode(request, self.path, self.mode)
            return response.is_modified(request, request.changes)

        if request.request_type == TaskRequestType.REMOVE:
            await remote.delete_directory(request, self.path, recurse=self.recurse)
            return response.is_removed(request)

        return response.not_supported(request)
