# Copyright (c) 2024 Convoy Contributors
# MIT License

"""
Convoy Error Classes.

Run-scoped errors (configuration, parse, inventory, role cycles) abort the
whole run and map to process exit codes. Host-scoped errors (connection,
module, template) are caught at the per-host boundary and turned into a
failed task outcome for that host only.
"""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from convoy.connections.base import CommandResult


class ExitCode(enum.IntEnum):
    """Process exit codes."""

    SUCCESS = 0
    GENERIC_ERROR = 1
    HOST_FAILED = 2
    PARSE_ERROR = 3
    KEYBOARD_INTERRUPT = 130


class ConvoyError(Exception):
    """Base exception for all Convoy errors."""

    exit_code: int = ExitCode.GENERIC_ERROR

    def __init__(self, message: str, details: str | None = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}\n  Details: {self.details}"
        return self.message


class ConfigurationError(ConvoyError):
    """Bad CLI or playbook arguments, detected before any host is touched."""

    exit_code: int = ExitCode.PARSE_ERROR


class ParseError(ConvoyError):
    """Error parsing a playbook, role, or other input file."""

    exit_code: int = ExitCode.PARSE_ERROR

    def __init__(
        self,
        message: str,
        file_path: str | None = None,
        line: int | None = None,
        details: str | None = None,
    ) -> None:
        self.file_path = file_path
        self.line = line
        self.reason = message
        location = ""
        if file_path:
            location = f" in {file_path}"
            if line:
                location += f" at line {line}"
        super().__init__(f"Parse error{location}: {message}", details)


class InventoryError(ConvoyError):
    """Missing or invalid hosts or groups."""

    exit_code: int = ExitCode.PARSE_ERROR

    def __init__(self, message: str, file_path: str | None = None) -> None:
        self.file_path = file_path
        if file_path:
            message = f"{message} ({file_path})"
        super().__init__(message)


class RoleCycleError(ConvoyError):
    """Circular role dependency."""

    exit_code: int = ExitCode.PARSE_ERROR

    def __init__(self, chain: List[str]) -> None:
        self.chain = list(chain)
        super().__init__(
            f"circular role dependency detected: {' -> '.join(self.chain)}"
        )


class ConnectionError(ConvoyError):
    """Error connecting to a remote host."""

    exit_code: int = ExitCode.HOST_FAILED

    def __init__(
        self,
        host: str,
        message: str,
        connection_type: str | None = None,
        details: str | None = None,
    ) -> None:
        self.host = host
        self.connection_type = connection_type
        conn_info = f" ({connection_type})" if connection_type else ""
        super().__init__(f"Connection to {host}{conn_info} failed: {message}", details)


class ModuleError(ConvoyError):
    """Error executing a module on a host."""

    exit_code: int = ExitCode.HOST_FAILED

    def __init__(
        self,
        module: str,
        host: str,
        message: str,
        rc: int | None = None,
        output: str | None = None,
    ) -> None:
        self.module = module
        self.host = host
        self.reason = message
        self.rc = rc
        self.output = output

        details_parts = []
        if rc is not None:
            details_parts.append(f"rc={rc}")
        if output:
            details_parts.append(f"output: {output[:200]}")

        super().__init__(
            f"Module '{module}' failed on {host}: {message}",
            "; ".join(details_parts) if details_parts else None
        )


class CommandFailedError(ModuleError):
    """A remote command returned a non-zero exit status."""

    def __init__(self, module: str, host: str, result: "CommandResult") -> None:
        self.result = result
        super().__init__(
            module,
            host,
            f"command failed: {result.cmd}",
            rc=result.rc,
            output=result.out,
        )


class TemplateError(ConvoyError):
    """Error rendering a Jinja2 template."""

    exit_code: int = ExitCode.PARSE_ERROR

    def __init__(
        self,
        message: str,
        template: str | None = None,
        field: str | None = None,
    ) -> None:
        self.template = template
        self.field = field
        self.reason = message

        details = None
        if template:
            # Truncate long templates
            truncated = template[:100] + "..." if len(template) > 100 else template
            details = f"Template: {truncated}"

        prefix = f"field '{field}': " if field else ""
        super().__init__(f"Template error: {prefix}{message}", details)


class HostFailedError(ConvoyError):
    """No hosts are left to run a task against."""

    exit_code: int = ExitCode.HOST_FAILED

    def __init__(self, message: str, task: Optional[str] = None) -> None:
        self.task = task
        if task:
            message = f"{message} (task '{task}')"
        super().__init__(message)


class BarrierError(ConvoyError):
    """A host could not pass a synchronization barrier."""

    exit_code: int = ExitCode.HOST_FAILED

    def __init__(self, barrier: str, message: str) -> None:
        self.barrier = barrier
        super().__init__(message, details=f"barrier: {barrier}")


class AllWithdrawnError(BarrierError):
    """Every participant withdrew from a loose barrier."""

    def __init__(self, barrier: str) -> None:
        super().__init__(barrier, "all hosts have withdrawn from barrier")


class StrictWithdrawalError(BarrierError):
    """A participant withdrew from a strict barrier, poisoning it."""

    def __init__(self, barrier: str) -> None:
        super().__init__(barrier, "host withdrew from strict barrier")


class ProvisionError(ConvoyError):
    """A host's infrastructure could not be provisioned."""

    exit_code: int = ExitCode.HOST_FAILED

    def __init__(self, host: str, message: str) -> None:
        self.host = host
        super().__init__(f"Provisioning {host} failed: {message}")
