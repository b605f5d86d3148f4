#!/usr/bin/env python3
"""
AppDynamics Agent Control - Configuration
Loads settings once (YAML file merged over defaults, then environment
overrides) into an immutable AgentSettings value that callers pass around.
"""

import copy
import os
import socket
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .errors import ConfigurationError
from .paths import AgentPaths

DEFAULT_CONFIG_FILE = Path('/etc/appdynamics/agentctl.yaml')
CONFIG_ENV_VAR = 'APPD_AGENTCTL_CONFIG'
ENV_PREFIX = 'APPDYNAMICS_'

DEFAULTS: Dict[str, Any] = {
    'agent': {
        'home': '/opt/appdynamics',
        'directory': 'machine-agent',
        'run_as_user': 'root',
        'required_user': 'root',
    },
    'service': {
        'name': 'appdynamics-machine-agent',
        'unit_dir': '/etc/systemd/system',
        'start_verify_seconds': 5,
        'stop_kill_wait_seconds': 2,
    },
    'package': {
        'search_dir': '/tmp',
        'pattern': 'machineagent-bundle*',
    },
    'backups': {
        'root': '/opt/appdynamics/backups',
    },
    'logging': {
        'file': '/var/log/appdynamics-management.log',
        'level': 'INFO',
    },
    # None = not supplied; install fills these from INSTALL_DEFAULTS,
    # upgrade only writes the ones that were supplied.
    'controller': {
        'host': None,
        'port': None,
        'ssl_enabled': None,
        'orchestration': None,
        'unique_host_id': None,
        'access_key': None,
        'account_name': None,
        'sim_enabled': None,
        'sap_machine': None,
        'machine_path': None,
        'application_name': None,
        'tier_name': None,
        'node_name': None,
    },
    'truststore': {
        'password': 'changeit',
    },
    'extensions': {
        'server_monitoring': {
            'max_volumes': 25,
            'max_networks': 5,
            'max_monitored_classes': 20,
        },
        'url_monitor': {
            'template': '/tmp/UrlMonitor_template.zip',
            'application_name': 'applicationname',
            'node_name': None,
            'port': 8443,
            'api_name': 'healthcheck',
            'api': '/api/healthcheck',
        },
    },
}

# Controller field -> environment variable suffix (after APPDYNAMICS_)
ENV_VARS: Dict[str, str] = {
    'host': 'CONTROLLER_HOST',
    'port': 'CONTROLLER_PORT',
    'ssl_enabled': 'CONTROLLER_SSL',
    'orchestration': 'ORCHESTRATION',
    'unique_host_id': 'UNIQUE_HOST_ID',
    'access_key': 'ACCESS_KEY',
    'account_name': 'ACCOUNT_NAME',
    'sim_enabled': 'SIM_ENABLED',
    'sap_machine': 'SAP_MACHINE',
    'machine_path': 'MACHINE_PATH',
    'application_name': 'APP_NAME',
    'tier_name': 'TIER_NAME',
    'node_name': 'NODE_NAME',
}

REQUIRED_FOR_INSTALL = ('host', 'access_key', 'account_name')


def _text(value: Any) -> Optional[str]:
    """Render a YAML/env value the way it is written into controller-info.xml."""
    if value is None:
        return None
    if isinstance(value, bool):
        return 'true' if value else 'false'
    text = str(value).strip()
    return text or None


def short_hostname() -> str:
    return socket.gethostname().split('.')[0]


@dataclass(frozen=True)
class ControllerSettings:
    """Deployment values written into controller-info.xml."""
    host: Optional[str] = None
    port: Optional[str] = None
    ssl_enabled: Optional[str] = None
    orchestration: Optional[str] = None
    unique_host_id: Optional[str] = None
    access_key: Optional[str] = None
    account_name: Optional[str] = None
    sim_enabled: Optional[str] = None
    sap_machine: Optional[str] = None
    machine_path: Optional[str] = None
    application_name: Optional[str] = None
    tier_name: Optional[str] = None
    node_name: Optional[str] = None

    def supplied(self) -> Dict[str, str]:
        """Only the values the operator actually set."""
        return {f.name: getattr(self, f.name) for f in fields(self)
                if getattr(self, f.name) is not None}

    def missing_for_install(self):
        return [name for name in REQUIRED_FOR_INSTALL if getattr(self, name) is None]

    def with_install_defaults(self, hostname: str = None) -> 'ControllerSettings':
        """Fill unset values with what a fresh install uses."""
        full = socket.gethostname() if hostname is None else hostname
        short = full.split('.')[0]
        defaults = {
            'port': '443',
            'ssl_enabled': 'true',
            'orchestration': 'false',
            'unique_host_id': short,
            'sim_enabled': 'true',
            'application_name': 'Application',
            'tier_name': 'App',
            'node_name': full,
        }
        return replace(self, **{k: v for k, v in defaults.items()
                                if getattr(self, k) is None})


@dataclass(frozen=True)
class ServerMonitoringLimits:
    max_volumes: int = 25
    max_networks: int = 5
    max_monitored_classes: int = 20


@dataclass(frozen=True)
class UrlMonitorSettings:
    template: Path = Path('/tmp/UrlMonitor_template.zip')
    application_name: str = 'applicationname'
    node_name: Optional[str] = None
    port: str = '8443'
    api_name: str = 'healthcheck'
    api: str = '/api/healthcheck'


@dataclass(frozen=True)
class AgentSettings:
    """Everything one invocation needs, resolved up front."""
    paths: AgentPaths = field(default_factory=AgentPaths)
    controller: ControllerSettings = field(default_factory=ControllerSettings)
    run_as_user: str = 'root'
    required_user: str = 'root'
    start_verify_seconds: float = 5
    stop_kill_wait_seconds: float = 2
    truststore_password: str = 'changeit'
    log_level: str = 'INFO'
    server_monitoring: ServerMonitoringLimits = field(default_factory=ServerMonitoringLimits)
    url_monitor: UrlMonitorSettings = field(default_factory=UrlMonitorSettings)


def _deep_merge(base: Dict, override: Dict) -> Dict:
    """Deep merge override into base."""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config_file(config_file: Optional[Path]) -> Dict[str, Any]:
    """Load YAML and merge it over DEFAULTS. A missing file means defaults."""
    if config_file is None or not Path(config_file).exists():
        return _deep_merge(DEFAULTS, {})

    try:
        with open(config_file, 'r') as f:
            loaded = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to load config {config_file}: {e}") from e

    if not isinstance(loaded, dict):
        raise ConfigurationError(
            f"Config {config_file} must be a mapping, got {type(loaded).__name__}"
        )
    return _deep_merge(DEFAULTS, loaded)


def controller_from_env(base: Mapping[str, Any],
                        environ: Mapping[str, str]) -> ControllerSettings:
    """Apply APPDYNAMICS_* (or unprefixed) environment overrides."""
    values = {name: _text(base.get(name)) for name in ENV_VARS}
    for name, suffix in ENV_VARS.items():
        for var in (ENV_PREFIX + suffix, suffix):
            env_value = _text(environ.get(var))
            if env_value is not None:
                values[name] = env_value
                break
    return ControllerSettings(**values)


def build_settings(raw: Mapping[str, Any],
                   environ: Mapping[str, str] = None) -> AgentSettings:
    """Turn a merged config dict into AgentSettings."""
    environ = os.environ if environ is None else environ
    agent = raw['agent']
    service = raw['service']
    ext = raw.get('extensions', {})
    sm = ext.get('server_monitoring', {})
    url = ext.get('url_monitor', {})

    try:
        paths = AgentPaths(
            home=Path(agent['home']),
            agent_dirname=agent['directory'],
            backup_root=Path(raw['backups']['root']),
            unit_dir=Path(service['unit_dir']),
            service_name=service['name'],
            package_dir=Path(raw['package']['search_dir']),
            package_pattern=raw['package']['pattern'],
            log_file=Path(raw['logging']['file']),
        )
        return AgentSettings(
            paths=paths,
            controller=controller_from_env(raw.get('controller') or {}, environ),
            run_as_user=agent['run_as_user'],
            required_user=agent['required_user'],
            start_verify_seconds=float(service['start_verify_seconds']),
            stop_kill_wait_seconds=float(service['stop_kill_wait_seconds']),
            truststore_password=str(raw['truststore']['password']),
            log_level=str(raw['logging']['level']).upper(),
            server_monitoring=ServerMonitoringLimits(
                max_volumes=int(sm.get('max_volumes', 25)),
                max_networks=int(sm.get('max_networks', 5)),
                max_monitored_classes=int(sm.get('max_monitored_classes', 20)),
            ),
            url_monitor=UrlMonitorSettings(
                template=Path(url.get('template', '/tmp/UrlMonitor_template.zip')),
                application_name=str(url.get('application_name', 'applicationname')),
                node_name=_text(url.get('node_name')),
                port=str(url.get('port', 8443)),
                api_name=str(url.get('api_name', 'healthcheck')),
                api=str(url.get('api', '/api/healthcheck')),
            ),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid configuration value: {e}") from e


def resolve_config_path(explicit: Optional[str] = None,
                        environ: Mapping[str, str] = None) -> Path:
    environ = os.environ if environ is None else environ
    if explicit:
        return Path(explicit)
    if environ.get(CONFIG_ENV_VAR):
        return Path(environ[CONFIG_ENV_VAR])
    return DEFAULT_CONFIG_FILE


def load_settings(config_file: Optional[str] = None,
                  environ: Mapping[str, str] = None) -> AgentSettings:
    """Load settings from file + environment."""
    environ = os.environ if environ is None else environ
    path = resolve_config_path(config_file, environ)
    if config_file and not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")
    return build_settings(load_config_file(path), environ)
