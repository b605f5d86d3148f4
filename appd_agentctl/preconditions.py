#!/usr/bin/env python3
"""
AppDynamics Agent Control - Precondition Checks
Each check either returns quietly or raises the matching AgentCtlError.
"""

import os
import pwd
from typing import Iterable

from .config import ControllerSettings
from .errors import (
    ConfigurationError, MissingDependencyError, NotInstalledError, PrivilegeError,
)
from .logger import get_logger
from .paths import AgentPaths
from .runner import CommandRunner
from .service import ServiceManager

logger = get_logger('preconditions')


def current_user() -> str:
    """Effective user name (whoami)."""
    return pwd.getpwuid(os.geteuid()).pw_name


def require_user(expected: str, actual: str = None):
    actual = current_user() if actual is None else actual
    if actual != expected:
        raise PrivilegeError(
            f"This command must be run as {expected} user (current user: {actual})",
            hint="Re-run with sudo",
        )
    logger.debug(f"User validation passed ({actual})")


def require_tools(names: Iterable[str], runner: CommandRunner):
    missing = [name for name in names if runner.which(name) is None]
    if missing:
        raise MissingDependencyError(
            f"Required tools not found: {', '.join(missing)}",
            hint="Install the missing packages and try again",
        )


def require_installed(paths: AgentPaths):
    if not paths.agent_dir.is_dir():
        raise NotInstalledError(
            f"AppDynamics Machine Agent is not installed "
            f"(installation directory not found: {paths.agent_dir})"
        )


def require_service_registered(service: ServiceManager):
    if not service.is_registered():
        raise NotInstalledError(f"Service {service.name} is not registered with systemd")


def require_controller_settings(controller: ControllerSettings):
    missing = controller.missing_for_install()
    if missing:
        listing = '\n'.join(f"  - {name}" for name in missing)
        raise ConfigurationError(
            f"Missing required controller settings:\n{listing}",
            hint="Set them in the config file or as APPDYNAMICS_* environment variables",
        )
