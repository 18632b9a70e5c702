"""
Convoy file module

Ensure a file exists with the given content and mode, or is absent.
Content is compared by SHA-512 checksum so an unchanged file is matched.
"""

import hashlib
from pathlib import Path
from typing import List, Optional

from convoy.engine.templating import TemplateMode
from convoy.modules.base import Action, EvaluatedTask, Module
from convoy.modules.builtin_directory import normalize_mode
from convoy.modules.handle import TaskHandle
from convoy.tasks.fields import Field
from convoy.tasks.request import TaskRequest, TaskRequestType
from convoy.tasks.response import TaskResponse


class FileModule(Module):
    """
    Manage a file.

    Parameters:
        path:     destination path on the host
        content:  templated file content
        src:      local file to copy (mutually exclusive with ``content``)
        mode:     octal permissions, e.g. "0644"
        remove:   ensure the file is absent
    """

    name = "file"
    required_args = ["path"]
    optional_args = ["content", "src", "mode", "remove"]

    def evaluate(self, handle: TaskHandle, request: TaskRequest, mode: TemplateMode) -> EvaluatedTask:
        template = handle.template
        content = template.string_option(request, mode, "content", self.get_arg("content"))
        src = template.string_option(request, mode, "src", self.get_arg("src"))
        if content is not None and src is not None:
            raise handle.fail("'content' and 'src' are mutually exclusive")
        action = FileAction(
            path=template.path(request, mode, "path", self.get_arg("path")),
            content=content,
            src=src,
            mode=template.string_option(request, mode, "mode", self.get_arg("mode")),
            remove=template.boolean_option_default(request, mode, "remove", self.get_arg("remove"), False),
        )
        return self.evaluated(action, handle, request, mode)


class FileAction(Action):

    def __init__(
        self,
        path: str,
        content: Optional[str] = None,
        src: Optional[str] = None,
        mode: Optional[str] = None,
        remove: bool = False,
    ):
        self.path = path
        self.content = content
        self.src = src
        self.mode = mode
        self.remove = remove

    def local_checksum(self, handle: TaskHandle) -> Optional[str]:
        if self.content is not None:
            return hashlib.sha512(self.content.encode('utf-8')).hexdigest()
        if self.src is not None:
            try:
                data = Path(self.src).read_bytes()
            except OSError as e:
                raise handle.fail(f"cannot read {self.src}: {e}")
            return hashlib.sha512(data).hexdigest()
        return None

    async def _write(self, handle: TaskHandle, request: TaskRequest) -> None:
        if self.content is not None:
            await handle.remote.write_data(request, self.content, self.path)
        elif self.src is not None:
            await handle.remote.copy_file(request, self.src, self.path)
        else:
            await handle.remote.touch_file(request, self.path)

    async def dispatch(self, handle: TaskHandle, request: TaskRequest) -> TaskResponse:
        remote = handle.remote
        response = handle.response

        if request.request_type == TaskRequestType.QUERY:
            exists = await remote.file_exists(request, self.path)
            if self.remove:
                return response.needs_removal(request) if exists else response.is_matched(request)
            if not exists:
                return response.needs_creation(request)
            if not await remote.is_file(request, self.path):
                return response.is_failed(request, f"{self.path} exists and is not a regular file")

            changes: List[Field] = []
            expected = self.local_checksum(handle)
            if expected is not None and await remote.get_checksum(request, self.path) != expected:
                changes.append(Field.CONTENT)
            if self.mode is not None:
                actual = await remote.get_mode(request, self.path)
                if normalize_mode(actual) != normalize_mode(self.mode):
                    changes.append(Field.MODE)
            if changes:
                return response.needs_modification(request, changes)
            return response.is_matched(request)

        if request.request_type == TaskRequestType.CREATE:
            await self._write(handle, request)
            if self.mode is not None:
                await remote.set_mode(request, self.path, self.mode)
            return response.is_created(request)

        if request.request_type == TaskRequestType.MODIFY:
            if Field.CONTENT in request.changes:
                await self._write(handle, request)
            if Field.MODE in request.changes:
                await remote.set_mode(request, self.path, self.mode)
            return response.is_modified(request, request.changes)

        if request.request_type == TaskRequestType.REMOVE:
            await remote.delete_file(request, self.path)
            return response.is_removed(request)

        return response.not_supported(request)
