#!/usr/bin/env python3
"""
AppDynamics Agent Control - Error Types
Every fatal condition maps to one exception class and a process exit code.
"""

from typing import Optional, Sequence


class AgentCtlError(Exception):
    """Base class for fatal, operator-visible failures."""

    exit_code = 1

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.hint = hint


class PrivilegeError(AgentCtlError):
    """Not running as the required account."""


class MissingDependencyError(AgentCtlError):
    """A required external executable is not available."""


class NotInstalledError(AgentCtlError):
    """The agent installation or its service unit is absent."""


class ConfigurationError(AgentCtlError):
    """Settings are missing or the config file cannot be used."""


class PackageNotFoundError(AgentCtlError):
    """No agent bundle matched."""


class ExtractionError(AgentCtlError):
    """The agent bundle could not be unpacked."""


class BackupNotFoundError(AgentCtlError):
    """The named backup does not exist."""


class ServiceStartError(AgentCtlError):
    """The service did not reach the active state."""


class AgentNotRunningError(AgentCtlError):
    """No running Machine Agent process was found."""


class CommandError(AgentCtlError):
    """An external command exited non-zero."""

    def __init__(self, args: Sequence[str], returncode: int,
                 stdout: str = '', stderr: str = ''):
        self.command = list(args)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        detail = (stderr or stdout or '').strip()
        message = f"Command failed ({returncode}): {' '.join(self.command)}"
        if detail:
            message += f"\n  {detail}"
        super().__init__(message)
