#!/usr/bin/env python3
"""
AppDynamics Agent Control - Command Line Interface

Usage:
    appd-agentctl install [package]
    appd-agentctl upgrade [package]
    appd-agentctl remove [--force] [--keep-config]
    appd-agentctl status
    appd-agentctl backup [--name NAME]
    appd-agentctl list-backups
    appd-agentctl restore [backup]
    appd-agentctl restart
    appd-agentctl resolve-ssl
    appd-agentctl tune-extensions
    appd-agentctl install-url-monitor

With no command the status summary is shown.
"""

import argparse
import sys
import time
from dataclasses import dataclass
from typing import Callable, List

from . import __version__
from .backups import BackupManager
from .config import AgentSettings, load_settings
from .errors import AgentCtlError
from .extensions import install_url_monitor, tune_server_monitoring
from .installer import Installer
from .logger import AgentCtlLogger, configure_logging, get_logger
from .preconditions import (
    current_user, require_installed, require_service_registered, require_user,
)
from .removal import remove
from .results import OperationResult
from .runner import CommandRunner
from .service import ServiceManager
from .status import gather_status, render_backups, render_status
from .truststore import TruststoreResolver
from .tui import tui

logger = get_logger('cli')


@dataclass
class Toolkit:
    """Components for one invocation, all sharing one runner."""
    settings: AgentSettings
    runner: CommandRunner
    service: ServiceManager
    backups: BackupManager


def build_toolkit(settings: AgentSettings, runner: CommandRunner = None,
                  sleep: Callable[[float], None] = time.sleep) -> Toolkit:
    runner = runner or CommandRunner()
    service = ServiceManager.from_settings(settings, runner, sleep)
    return Toolkit(settings, runner, service, BackupManager(settings, service))


def report(result: OperationResult, success: str):
    """Print the outcome of a best-effort operation."""
    if result.cancelled:
        print("Removal cancelled." if result.operation == 'remove' else "Cancelled.")
        return
    for warning in result.warnings:
        tui.warning(warning)
    if result.ok:
        tui.success(success)
    else:
        tui.error(f"{result.operation} failed")
    if result.backup:
        print(f"Backup available at: {result.backup}")


# ----------------------------------------------------------------------
# Command handlers
# ----------------------------------------------------------------------

def cmd_status(kit: Toolkit, args) -> int:
    render_status(gather_status(kit.settings, kit.service, kit.backups))
    return 0


def cmd_install(kit: Toolkit, args) -> int:
    tui.banner("Installing AppDynamics Machine Agent")
    result = Installer(kit.settings, kit.service, kit.backups).install(args.package)
    report(result, "Installation completed successfully")
    print(f"Service status: {result.details.get('service_state', 'unknown')}")
    return result.exit_code


def cmd_upgrade(kit: Toolkit, args) -> int:
    tui.banner("Upgrading AppDynamics Machine Agent")
    result = Installer(kit.settings, kit.service, kit.backups).upgrade(args.package)
    report(result, "Upgrade completed successfully")
    print(f"Previous version: {result.details.get('previous_version')}")
    print(f"New version: {result.details.get('version')}")
    return result.exit_code


def cmd_remove(kit: Toolkit, args) -> int:
    require_user(kit.settings.required_user)
    tui.banner("Removing AppDynamics Machine Agent")
    result = remove(kit.settings, kit.service, kit.backups,
                    force=args.force, keep_config=args.keep_config)
    if result.details.get('installed') == 'false':
        return 0
    report(result, "Removal completed successfully")
    if 'config_backup' in result.details:
        print(f"Configuration preserved at: {result.details['config_backup']}")
    return result.exit_code


def cmd_backup(kit: Toolkit, args) -> int:
    require_user(kit.settings.required_user)
    require_installed(kit.settings.paths)
    path = kit.backups.create_backup(args.name)
    print(f"Backup created: {path}")
    return 0


def cmd_list_backups(kit: Toolkit, args) -> int:
    print(f"Available backups in {kit.settings.paths.backup_root}:")
    render_backups(kit.backups.list_backups())
    return 0


def cmd_restore(kit: Toolkit, args) -> int:
    require_user(kit.settings.required_user)
    name = args.backup
    if not name:
        print()
        cmd_list_backups(kit, args)
        print()
        name = tui.input("Enter backup name to restore")
    if not name:
        raise AgentCtlError("No backup specified")

    tui.banner(f"Restoring from Backup: {name}")
    result = kit.backups.restore_backup(name)
    report(result, "Restore completed")
    return result.exit_code


def cmd_restart(kit: Toolkit, args) -> int:
    require_user(kit.settings.required_user)
    require_installed(kit.settings.paths)
    require_service_registered(kit.service)
    if kit.service.restart():
        tui.success("Service restarted")
        return 0
    tui.error("Service failed to restart")
    return 1


def cmd_resolve_ssl(kit: Toolkit, args) -> int:
    require_user(kit.settings.required_user)
    tui.banner("Discovering Machine Agent and Controller Information")
    result = TruststoreResolver(kit.settings, kit.service).resolve()
    report(result, "Machine Agent is now using the updated truststore")
    return result.exit_code


def cmd_tune_extensions(kit: Toolkit, args) -> int:
    require_user(kit.settings.required_user)
    result = tune_server_monitoring(kit.settings, kit.service)
    report(result, "ServerMonitoring limits updated")
    return result.exit_code


def cmd_install_url_monitor(kit: Toolkit, args) -> int:
    require_user(kit.settings.required_user)
    result = install_url_monitor(kit.settings, kit.service)
    report(result, f"UrlMonitor installed at {result.details['monitor_dir']}")
    return result.exit_code


COMMANDS = {
    'install': cmd_install,
    'upgrade': cmd_upgrade,
    'remove': cmd_remove,
    'status': cmd_status,
    'backup': cmd_backup,
    'list-backups': cmd_list_backups,
    'restore': cmd_restore,
    'restart': cmd_restart,
    'resolve-ssl': cmd_resolve_ssl,
    'tune-extensions': cmd_tune_extensions,
    'install-url-monitor': cmd_install_url_monitor,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='appd-agentctl',
        description='AppDynamics Machine Agent management',
    )
    parser.add_argument('--config', help='YAML config file '
                        '(default: $APPD_AGENTCTL_CONFIG or /etc/appdynamics/agentctl.yaml)')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    subparsers = parser.add_subparsers(dest='command', help='Command')

    install = subparsers.add_parser('install', help='Install the Machine Agent')
    install.add_argument('package', nargs='?', help='Agent bundle (default: search /tmp)')

    upgrade = subparsers.add_parser('upgrade', help='Upgrade the Machine Agent')
    upgrade.add_argument('package', nargs='?', help='Agent bundle (default: search /tmp)')

    removal = subparsers.add_parser('remove', help='Completely remove the Machine Agent')
    removal.add_argument('--force', action='store_true', help='Skip confirmation prompts')
    removal.add_argument('--keep-config', action='store_true',
                         help='Preserve configuration files')

    subparsers.add_parser('status', help='Show agent status and version information')

    backup = subparsers.add_parser('backup', help='Back up the current installation')
    backup.add_argument('--name', help='Backup name (default: timestamp)')

    subparsers.add_parser('list-backups', help='List available backups')

    restore = subparsers.add_parser('restore', help='Restore from a backup')
    restore.add_argument('backup', nargs='?', help='Backup name (default: prompt)')

    subparsers.add_parser('restart', help='Restart the Machine Agent service')
    subparsers.add_parser('resolve-ssl', help='Rebuild the truststore from the controller')
    subparsers.add_parser('tune-extensions', help='Apply ServerMonitoring limits')
    subparsers.add_parser('install-url-monitor', help='Install the UrlMonitor extension')
    return parser


def main(argv: List[str] = None, runner: CommandRunner = None,
         sleep: Callable[[float], None] = time.sleep) -> int:
    """Main entry point"""
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        # --help exits 0; usage errors (unknown command) exit 1
        return 0 if e.code in (0, None) else 1

    command = args.command or 'status'

    configure_logging(None, 'DEBUG' if args.verbose else 'INFO')
    try:
        settings = load_settings(args.config)
        configure_logging(settings.paths.log_file,
                          'DEBUG' if args.verbose else settings.log_level)
        logger.info("Starting AppDynamics Management Script")
        logger.info(f"Command: {command}")
        logger.info(f"User: {current_user()}")

        kit = build_toolkit(settings, runner, sleep)
        return COMMANDS[command](kit, args)
    except AgentCtlError as e:
        logger.error(str(e))
        if e.hint:
            logger.error(e.hint)
        _log_file_hint()
        return e.exit_code
    except OSError as e:
        logger.error(f"Filesystem operation failed: {e}")
        _log_file_hint()
        return 1


def _log_file_hint():
    if AgentCtlLogger.log_file():
        logger.error(f"Check the log file for details: {AgentCtlLogger.log_file()}")


if __name__ == '__main__':
    sys.exit(main())
