#!/usr/bin/env python3
"""
AppDynamics Agent Control - Installer / Upgrader
Fresh installs from a machineagent-bundle archive and in-place upgrades that
keep the existing controller-info.xml.

Install flow:
    validate -> locate bundle -> quiesce service -> back up + clear old install
    -> extract -> configure -> permissions -> service unit -> start/verify

Upgrade flow:
    validate -> locate bundle -> pre_upgrade backup -> stop -> extract to temp
    -> swap files (conf/ kept) -> supplied overrides -> permissions -> start
"""

import re
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from .backups import BackupManager
from .config import AgentSettings
from .controller_info import configure
from .errors import AgentCtlError, CommandError, ExtractionError, ServiceStartError
from .filesystem import clear_except, copy_tree, merge_tree, normalize_permissions
from .logger import get_logger
from .packages import extract_archive, find_agent_root, flatten_bundle_dir, locate_package
from .preconditions import (
    require_controller_settings, require_installed, require_tools, require_user,
)
from .results import OperationResult
from .runner import CommandRunner
from .service import ServiceManager
from .versions import detect_agent_version

logger = get_logger('installer')

REQUIRED_TOOLS = ('systemctl',)

_USER_LINE = re.compile(r'^User=.*$', re.MULTILINE)
_ENV_USER_LINE = re.compile(r'^Environment=MACHINE_AGENT_USER=.*$', re.MULTILINE)


def render_service_unit(text: str, run_as: str) -> str:
    """Point the bundled unit at the run-as account."""
    text = _USER_LINE.sub(f'User={run_as}', text)
    return _ENV_USER_LINE.sub(f'Environment=MACHINE_AGENT_USER={run_as}', text)


class Installer:
    """Install and upgrade the Machine Agent."""

    def __init__(self, settings: AgentSettings, service: ServiceManager,
                 backups: BackupManager, runner: CommandRunner = None):
        self.settings = settings
        self.paths = settings.paths
        self.service = service
        self.backups = backups
        self.runner = runner or service.runner

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    def install_service_unit(self, enable: bool = True):
        """Copy the bundled unit (user-patched) into the unit directory."""
        bundled = self.paths.bundled_service_file
        if not bundled.is_file():
            raise ExtractionError(f"Service file not found: {bundled}")

        logger.info("Setting up systemd service...")
        rendered = render_service_unit(bundled.read_text(), self.settings.run_as_user)
        self.paths.service_file.parent.mkdir(parents=True, exist_ok=True)
        self.paths.service_file.write_text(rendered)

        self.service.daemon_reload()
        if enable:
            self.service.enable()
        logger.info("Systemd service configured successfully")

    def _quiesce(self, result: OperationResult):
        """Stop and disable an existing unit; failures only warn."""
        try:
            self.service.stop()
        except CommandError as e:
            result.warn(f"Failed to stop service gracefully: {e}")
        if self.service.is_enabled():
            try:
                self.service.disable()
            except CommandError as e:
                result.warn(f"Failed to disable service: {e}")

    def _rollback(self, backup: Path, result: OperationResult):
        """Put the pre-install tree back. Best effort."""
        saved_tree = backup / self.paths.agent_dirname
        logger.warning(f"Rolling back to previous installation from {backup}")
        try:
            if self.paths.agent_dir.exists():
                shutil.rmtree(self.paths.agent_dir)
            if saved_tree.is_dir():
                copy_tree(saved_tree, self.paths.agent_dir)
            saved_unit = backup / self.paths.service_unit_name
            if saved_unit.is_file():
                shutil.copy2(saved_unit, self.paths.service_file)
        except OSError as e:
            result.warn(f"Rollback incomplete, restore manually from {backup}: {e}")
            return
        logger.info("Previous installation restored")

    # ------------------------------------------------------------------
    # Install
    # ------------------------------------------------------------------

    def install(self, package: Optional[str] = None) -> OperationResult:
        """
        Install the agent from a bundle, replacing any existing install.

        Raises:
            ServiceStartError: files are installed but the unit is not active
        """
        logger.info("Starting AppDynamics Machine Agent installation")
        require_user(self.settings.required_user)
        require_tools(REQUIRED_TOOLS, self.runner)
        require_controller_settings(self.settings.controller)
        archive = locate_package(package, self.paths.package_dir, self.paths.package_pattern)
        logger.info(f"Using agent package: {archive}")

        result = OperationResult('install')
        controller = self.settings.controller.with_install_defaults()

        self._quiesce(result)

        previous = None
        if self.paths.agent_dir.exists():
            previous = self.backups.create_backup(
                f"pre_install_{self.backups.timestamp('%H%M%S')}", backup_type='Pre-install'
            )
            result.backup = previous
            logger.info(f"Removing existing installation: {self.paths.agent_dir}")
            shutil.rmtree(self.paths.agent_dir)

        try:
            extract_archive(archive, self.paths.agent_dir)
            flatten_bundle_dir(self.paths.agent_dir)

            logger.info("Configuring controller-info.xml...")
            configure(self.paths.controller_info, controller)

            normalize_permissions(self.paths.agent_dir, self.settings.run_as_user)
            self.install_service_unit()
        except (AgentCtlError, OSError):
            if previous is not None:
                self._rollback(previous, result)
            raise

        if not self.service.start():
            raise ServiceStartError(
                "AppDynamics Machine Agent service failed to start",
                hint=f"Check logs: journalctl -u {self.service.name} -n 50",
            )

        result.details['version'] = detect_agent_version(self.paths)
        result.details['service_state'] = self.service.state()
        logger.info("AppDynamics Machine Agent installation completed successfully")
        return result

    # ------------------------------------------------------------------
    # Upgrade
    # ------------------------------------------------------------------

    def _swap_files(self, new_root: Path):
        """Replace everything but conf/, then put controller-info.xml back."""
        config = self.paths.controller_info
        saved = config.read_bytes() if config.is_file() else None

        logger.info("Installing new version files...")
        clear_except(self.paths.agent_dir, 'conf')
        merge_tree(new_root, self.paths.agent_dir)

        if saved is not None:
            config.parent.mkdir(parents=True, exist_ok=True)
            config.write_bytes(saved)
            logger.info("Configuration preserved")

    def upgrade(self, package: Optional[str] = None) -> OperationResult:
        """
        Upgrade in place. There is no automatic rollback; on failure the
        pre-upgrade backup path is logged for a manual restore.
        """
        logger.info("Starting AppDynamics Machine Agent upgrade")
        require_user(self.settings.required_user)
        require_installed(self.paths)
        archive = locate_package(package, self.paths.package_dir, self.paths.package_pattern)
        logger.info(f"Upgrading from package: {archive}")

        result = OperationResult('upgrade')
        result.details['previous_version'] = detect_agent_version(self.paths)
        logger.info(f"Current version: {result.details['previous_version']}")

        backup = self.backups.create_backup(
            f"pre_upgrade_{self.backups.timestamp('%H%M%S')}", backup_type='Pre-upgrade'
        )
        result.backup = backup
        restore_hint = f"Restore the previous version with: appd-agentctl restore {backup.name}"

        try:
            self.service.stop(force=True)

            with tempfile.TemporaryDirectory(prefix='appd-upgrade-') as tmp:
                extract_archive(archive, Path(tmp))
                self._swap_files(find_agent_root(Path(tmp)))

            overrides = self.settings.controller
            if overrides.supplied():
                logger.info("Applying supplied controller settings...")
                configure(self.paths.controller_info, overrides)

            normalize_permissions(self.paths.agent_dir, self.settings.run_as_user)
            if self.paths.bundled_service_file.is_file():
                self.install_service_unit(enable=False)
        except (AgentCtlError, OSError) as e:
            logger.error(f"Upgrade failed; backup available at {backup}")
            if isinstance(e, AgentCtlError) and e.hint is None:
                e.hint = restore_hint
            raise

        if not self.service.start():
            logger.error(f"Backup available at: {backup}")
            raise ServiceStartError(
                "Upgrade completed but service failed to start", hint=restore_hint
            )

        result.details['version'] = detect_agent_version(self.paths)
        logger.info(
            f"Upgrade completed: {result.details['previous_version']} -> "
            f"{result.details['version']}"
        )
        return result
