#!/usr/bin/env python3
"""
AppDynamics Agent Control - Removal
Uninstalls the Machine Agent after taking a final backup.
"""

import shutil
from typing import Callable

from .backups import BackupManager
from .config import AgentSettings
from .filesystem import copy_tree
from .logger import get_logger
from .results import OperationResult
from .service import ServiceManager
from .tui import tui

logger = get_logger('removal')

WARNING_TEXT = (
    "WARNING: This will completely remove the AppDynamics Machine Agent!\n"
    "This action cannot be undone unless you have backups."
)


def _prompt(message: str) -> bool:
    print()
    print(WARNING_TEXT)
    print()
    return tui.confirm(message)


def remove(settings: AgentSettings, service: ServiceManager, backups: BackupManager,
           force: bool = False, keep_config: bool = False,
           confirm: Callable[[str], bool] = _prompt) -> OperationResult:
    """
    Remove the installation directory and the service unit.

    Args:
        force: Skip the confirmation prompt
        keep_config: Copy conf/ to <home>/config-backup-<timestamp>/ first
        confirm: Prompt callable; anything but yes/y cancels

    Returns:
        OperationResult; cancelled when the operator declines
    """
    paths = settings.paths
    result = OperationResult('remove')

    if not paths.agent_dir.is_dir() and not paths.service_file.is_file():
        logger.info("AppDynamics Machine Agent is not installed")
        result.details['installed'] = 'false'
        return result

    if not force and not confirm("Are you sure you want to continue?"):
        logger.info("Removal cancelled.")
        result.cancelled = True
        return result

    if paths.agent_dir.is_dir():
        result.backup = backups.create_backup(
            f"final_backup_{backups.timestamp('%H%M%S')}", backup_type='Final'
        )
        logger.info(f"Final backup created: {result.backup}")

    logger.info("Stopping and disabling service...")
    service.stop(force=True)
    if service.is_enabled():
        service.disable()

    if paths.service_file.is_file():
        paths.service_file.unlink()
        service.daemon_reload()
        logger.info("Service file removed")

    if paths.agent_dir.is_dir():
        if keep_config and paths.conf_dir.is_dir():
            stamp = backups.timestamp()
            config_backup = paths.home / f"config-backup-{stamp}"
            config_backup.mkdir(parents=True, exist_ok=True)
            copy_tree(paths.conf_dir, config_backup / 'conf')
            result.details['config_backup'] = str(config_backup)
            logger.info(f"Configuration preserved at: {config_backup}")

        shutil.rmtree(paths.agent_dir)
        logger.info("Installation directory removed")

    if paths.home.is_dir() and not any(paths.home.iterdir()):
        paths.home.rmdir()
        logger.info("Empty AppDynamics directory removed")

    logger.info("AppDynamics Machine Agent removal completed")
    return result
