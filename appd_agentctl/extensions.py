#!/usr/bin/env python3
"""
AppDynamics Agent Control - Extension Configuration
ServerMonitoring limits and the UrlMonitor extension install.
"""

import re
from pathlib import Path
from typing import Dict

import yaml

from .config import AgentSettings, short_hostname
from .errors import ConfigurationError, NotInstalledError, ServiceStartError
from .filesystem import normalize_permissions
from .logger import get_logger
from .packages import extract_archive
from .results import OperationResult
from .service import ServiceManager

logger = get_logger('extensions')

URL_MONITOR_MODE = 0o776


def _set_limit(text: str, key: str, value: int):
    """Rewrite 'key   : N' keeping the original spacing."""
    pattern = re.compile(rf'^(\s*{key}\s*:\s*)\S+', re.MULTILINE)
    return pattern.subn(lambda m: f"{m.group(1)}{value}", text)


def tune_server_monitoring(settings: AgentSettings, service: ServiceManager) -> OperationResult:
    """Apply volume/network/class limits to ServerMonitoring.yml and start the agent."""
    result = OperationResult('tune-extensions')
    config_file = settings.paths.server_monitoring_config
    if not config_file.is_file():
        raise NotInstalledError(f"ServerMonitoring config not found: {config_file}")

    limits = settings.server_monitoring
    wanted: Dict[str, int] = {
        'maxNumberVolumes': limits.max_volumes,
        'maxNumberNetworks': limits.max_networks,
        'maxNumberMonitoredClasses': limits.max_monitored_classes,
    }

    text = config_file.read_text()
    for key, value in wanted.items():
        text, count = _set_limit(text, key, value)
        if count:
            logger.info(f"  {key} = {value}")
        else:
            result.warn(f"{key} not found in {config_file.name}")

    try:
        yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Edited {config_file} is not valid YAML: {e}") from e

    config_file.write_text(text)
    logger.info(f"Updated {config_file}")

    if not service.start():
        raise ServiceStartError(
            "Machine Agent service failed to start",
            hint=f"Check logs: journalctl -u {service.name} -n 50",
        )
    return result


def fill_placeholders(text: str, values: Dict[str, str]) -> str:
    for placeholder, value in values.items():
        text = text.replace(f"<{placeholder}>", value)
    return text


def install_url_monitor(settings: AgentSettings, service: ServiceManager) -> OperationResult:
    """Unpack the UrlMonitor template into monitors/ and fill in its config.yml."""
    result = OperationResult('install-url-monitor')
    url = settings.url_monitor
    template = Path(url.template)
    if not template.is_file():
        raise ConfigurationError(f"UrlMonitor template not found: {template}")
    if not settings.paths.agent_dir.is_dir():
        raise NotInstalledError(f"Installation directory not found: {settings.paths.agent_dir}")

    dest = settings.paths.monitors_dir / f"UrlMonitor{url.application_name}"
    extract_archive(template, dest)
    normalize_permissions(dest, settings.run_as_user, URL_MONITOR_MODE)

    config_file = dest / 'config.yml'
    if not config_file.is_file():
        raise ConfigurationError(f"Template has no config.yml: {config_file}")

    config_file.write_text(fill_placeholders(config_file.read_text(), {
        'applicationname': url.application_name,
        'nodename': url.node_name or short_hostname(),
        'port': url.port,
        'apiname': url.api_name,
        'api': url.api,
    }))
    logger.info(f"Configured {config_file}")
    result.details['monitor_dir'] = str(dest)

    if not service.restart():
        raise ServiceStartError(
            "Machine Agent service failed to restart",
            hint=f"Check logs: journalctl -u {service.name} -n 50",
        )
    return result
