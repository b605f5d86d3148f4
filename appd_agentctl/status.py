#!/usr/bin/env python3
"""
AppDynamics Agent Control - Status Report
Read-only view of installation, service, configuration, logs and backups.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .backups import BackupInfo, BackupManager
from .config import AgentSettings
from .controller_info import read_fields
from .errors import ConfigurationError
from .service import DISABLED, RUNNING, ServiceManager
from .tui import tui
from .versions import detect_agent_version

NOT_CONFIGURED = 'Not configured'
SUMMARY_TAGS = {
    'Controller': 'controller-host',
    'Application': 'application-name',
    'Tier': 'tier-name',
}


@dataclass
class StatusReport:
    installed: bool
    agent_dir: str
    version: Optional[str] = None
    service_state: Optional[str] = None
    config_file: Optional[str] = None
    configuration: Dict[str, str] = field(default_factory=dict)
    recent_logs: List[str] = field(default_factory=list)
    backups: List[BackupInfo] = field(default_factory=list)


def gather_status(settings: AgentSettings, service: ServiceManager,
                  backups: BackupManager) -> StatusReport:
    paths = settings.paths
    report = StatusReport(installed=paths.agent_dir.is_dir(), agent_dir=str(paths.agent_dir))
    if not report.installed:
        return report

    report.version = detect_agent_version(paths)
    report.service_state = service.state()

    if paths.controller_info.is_file():
        report.config_file = str(paths.controller_info)
        try:
            values = read_fields(paths.controller_info, SUMMARY_TAGS.values())
        except ConfigurationError:
            values = {}
        report.configuration = {
            label: values.get(tag) or NOT_CONFIGURED
            for label, tag in SUMMARY_TAGS.items()
        }

    report.recent_logs = service.recent_logs(5)
    report.backups = backups.list_backups()
    return report


def render_backups(backups: List[BackupInfo]):
    if not backups:
        print("  No backups found")
        return
    for backup in backups:
        created = backup.created or 'Unknown'
        print(f"  {backup.name} (Created: {created})")


def render_status(report: StatusReport):
    tui.banner("AppDynamics Machine Agent Status")

    tui.section("Installation Status")
    if not report.installed:
        tui.status("Agent not installed", False)
        return
    tui.status(f"Agent installed at: {report.agent_dir}", True)
    tui.status(f"Agent version: {report.version}", True)

    tui.section("Service Status")
    if report.service_state == RUNNING:
        tui.status("Service is running", True)
        tui.status("Service is enabled", True)
    elif report.service_state == DISABLED:
        tui.status("Service is disabled", False)
    else:
        tui.status("Service is stopped", False)
        tui.status("Service is enabled", True)

    tui.section("Configuration")
    if report.config_file:
        tui.status(f"Configuration file: {report.config_file}", True)
        tui.keyvalue(report.configuration)
    else:
        tui.status("Configuration file not found", False)

    tui.section("Recent Logs")
    if report.recent_logs:
        for line in report.recent_logs:
            print(f"  {line}")
    else:
        print("  No recent logs available")

    tui.section("Available Backups")
    render_backups(report.backups)
