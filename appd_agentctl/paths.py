#!/usr/bin/env python3
"""
AppDynamics Agent Control - Path Resolver
Every filesystem location the toolkit touches, derived from a handful of roots.
"""

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class AgentPaths:
    """Well-known Machine Agent locations on a systemd host."""

    home: Path = Path('/opt/appdynamics')
    agent_dirname: str = 'machine-agent'
    backup_root: Path = Path('/opt/appdynamics/backups')
    unit_dir: Path = Path('/etc/systemd/system')
    service_name: str = 'appdynamics-machine-agent'
    package_dir: Path = Path('/tmp')
    package_pattern: str = 'machineagent-bundle*'
    log_file: Path = Path('/var/log/appdynamics-management.log')

    @property
    def agent_dir(self) -> Path:
        """Installation directory."""
        return self.home / self.agent_dirname

    @property
    def conf_dir(self) -> Path:
        return self.agent_dir / 'conf'

    @property
    def controller_info(self) -> Path:
        """Active controller-info.xml."""
        return self.conf_dir / 'controller-info.xml'

    @property
    def version_file(self) -> Path:
        return self.agent_dir / 'VERSION'

    @property
    def agent_jar(self) -> Path:
        return self.agent_dir / 'machineagent.jar'

    @property
    def service_unit_name(self) -> str:
        return f"{self.service_name}.service"

    @property
    def service_file(self) -> Path:
        """Installed systemd unit."""
        return self.unit_dir / self.service_unit_name

    @property
    def bundled_service_file(self) -> Path:
        """Unit template shipped inside the agent bundle."""
        return self.agent_dir / 'etc' / 'systemd' / 'system' / self.service_unit_name

    @property
    def startup_script(self) -> Path:
        return self.agent_dir / 'bin' / 'machine-agent'

    @property
    def keytool(self) -> Path:
        """keytool from the agent's bundled JRE."""
        return self.agent_dir / 'jre' / 'bin' / 'keytool'

    @property
    def truststore(self) -> Path:
        return self.conf_dir / 'truststore.jks'

    @property
    def monitors_dir(self) -> Path:
        return self.agent_dir / 'monitors'

    @property
    def server_monitoring_config(self) -> Path:
        return (self.agent_dir / 'extensions' / 'ServerMonitoring'
                / 'conf' / 'ServerMonitoring.yml')

    def backup_dir(self, name: str) -> Path:
        """Get directory for a named backup."""
        return self.backup_root / name

    def for_agent_home(self, agent_dir: Path) -> 'AgentPaths':
        """Re-root onto an agent discovered somewhere other than the default."""
        agent_dir = Path(agent_dir)
        return AgentPaths(
            home=agent_dir.parent,
            agent_dirname=agent_dir.name,
            backup_root=self.backup_root,
            unit_dir=self.unit_dir,
            service_name=self.service_name,
            package_dir=self.package_dir,
            package_pattern=self.package_pattern,
            log_file=self.log_file,
        )
