#!/usr/bin/env python3
"""
AppDynamics Agent Control - Backup & Restore
Snapshots the Machine Agent installation directory and its systemd unit.

What gets backed up:
- <home>/machine-agent (whole tree)
- /etc/systemd/system/appdynamics-machine-agent.service
- backup_info.txt metadata (created, hostname, version, service state, type)

Backups are plain directories under the backup root and are never modified
or deleted by this tool.
"""

import shutil
import socket
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .config import AgentSettings
from .errors import AgentCtlError, BackupNotFoundError
from .filesystem import copy_tree, normalize_permissions
from .logger import get_logger
from .results import OperationResult
from .service import ServiceManager
from .versions import detect_agent_version

logger = get_logger('backups')

METADATA_FILE = 'backup_info.txt'
CREATED_KEY = 'Backup Created'


@dataclass
class BackupInfo:
    name: str
    path: Path
    created: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)


def read_metadata(backup_dir: Path) -> Dict[str, str]:
    """Parse 'Key: value' lines from a backup's metadata file."""
    meta_file = Path(backup_dir) / METADATA_FILE
    if not meta_file.is_file():
        return {}
    metadata = {}
    for line in meta_file.read_text(errors='replace').splitlines():
        key, sep, value = line.partition(':')
        if sep:
            metadata[key.strip()] = value.strip()
    return metadata


def valid_backup_name(name: str) -> bool:
    """A single path component directly under the backup root."""
    return bool(name) and '/' not in name and name not in ('.', '..')


class BackupManager:
    """Manage backups of the Machine Agent installation."""

    def __init__(self, settings: AgentSettings, service: ServiceManager,
                 clock: Callable[[], datetime] = datetime.now):
        self.settings = settings
        self.paths = settings.paths
        self.service = service
        self._clock = clock

    def timestamp(self, fmt: str = '%Y%m%d_%H%M%S') -> str:
        return self._clock().strftime(fmt)

    def _unique_dir(self, name: str) -> Path:
        target = self.paths.backup_dir(name)
        suffix = 1
        while target.exists():
            target = self.paths.backup_dir(f"{name}_{suffix}")
            suffix += 1
        return target

    def create_backup(self, name: Optional[str] = None,
                      backup_type: str = 'Manual') -> Path:
        """
        Copy the installation directory and unit file into a new backup.

        Args:
            name: Backup directory name (default: current timestamp)
            backup_type: Recorded in the metadata file

        Returns:
            Path to the backup directory
        """
        name = name or self.timestamp()
        if not valid_backup_name(name):
            raise AgentCtlError(f"Invalid backup name: {name}")

        target = self._unique_dir(name)
        logger.info(f"Creating backup: {target.name}")
        target.mkdir(parents=True)

        if self.paths.agent_dir.is_dir():
            copy_tree(self.paths.agent_dir, target / self.paths.agent_dirname)
            logger.info("Installation directory backed up")

        if self.paths.service_file.is_file():
            shutil.copy2(self.paths.service_file, target / self.paths.service_unit_name)
            logger.info("Service file backed up")

        metadata = {
            CREATED_KEY: self.timestamp('%Y-%m-%d %H:%M:%S'),
            'Hostname': socket.gethostname(),
            'Agent Version': detect_agent_version(self.paths),
            'Service Status': self.service.state(),
            'Backup Type': backup_type,
        }
        (target / METADATA_FILE).write_text(
            ''.join(f"{key}: {value}\n" for key, value in metadata.items())
        )

        logger.info(f"Backup completed: {target}")
        return target

    def list_backups(self) -> List[BackupInfo]:
        """List all available backups, sorted by name."""
        root = self.paths.backup_root
        if not root.is_dir():
            return []

        backups = []
        for backup_dir in sorted(p for p in root.iterdir() if p.is_dir()):
            metadata = read_metadata(backup_dir)
            backups.append(BackupInfo(
                name=backup_dir.name,
                path=backup_dir,
                created=metadata.get(CREATED_KEY),
                metadata=metadata,
            ))
        return backups

    def restore_backup(self, name: str) -> OperationResult:
        """
        Restore the installation from a named backup.

        The current state is snapshotted first. A service that fails to come
        back is reported as a warning; nothing is rolled back.
        """
        if not valid_backup_name(name):
            raise BackupNotFoundError(f"Backup not found: {name!r}")
        backup_dir = self.paths.backup_dir(name)
        if not backup_dir.is_dir():
            raise BackupNotFoundError(f"Backup not found: {backup_dir}")

        result = OperationResult('restore')
        logger.info(f"Restoring from backup: {name}")

        self.service.stop(force=True)

        pre_restore = self.create_backup(
            f"pre_restore_{self.timestamp('%H%M%S')}", backup_type='Pre-restore'
        )
        result.backup = pre_restore
        logger.info(f"Created pre-restore backup: {pre_restore}")

        saved_tree = backup_dir / self.paths.agent_dirname
        if saved_tree.is_dir():
            if self.paths.agent_dir.exists():
                shutil.rmtree(self.paths.agent_dir)
            self.paths.home.mkdir(parents=True, exist_ok=True)
            copy_tree(saved_tree, self.paths.agent_dir)
            normalize_permissions(self.paths.agent_dir, self.settings.run_as_user)
            logger.info("Installation directory restored")
        else:
            result.warn(f"Backup {name} has no installation directory; left as is")

        saved_unit = backup_dir / self.paths.service_unit_name
        if saved_unit.is_file():
            self.paths.service_file.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(saved_unit, self.paths.service_file)
            logger.info("Service file restored")

        if self.service.start():
            logger.info("Restore completed successfully")
            result.details['service_started'] = 'true'
        else:
            result.details['service_started'] = 'false'
            result.warn("Restore completed but service failed to start")
        return result
