#!/usr/bin/env python3
"""
AppDynamics Agent Control - systemd Service Manager
Thin wrapper over systemctl/journalctl for a single unit.
"""

import time
from typing import Callable, List

from .errors import CommandError
from .logger import get_logger
from .runner import CommandRunner

logger = get_logger('service')

RUNNING = 'running'
STOPPED = 'stopped'
DISABLED = 'disabled'


class ServiceManager:
    """Controls one systemd unit."""

    def __init__(self, name: str, runner: CommandRunner = None,
                 verify_delay: float = 5, kill_wait: float = 2,
                 sleep: Callable[[float], None] = time.sleep):
        self.name = name
        self.runner = runner or CommandRunner()
        self.verify_delay = verify_delay
        self.kill_wait = kill_wait
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings, runner: CommandRunner = None,
                      sleep: Callable[[float], None] = time.sleep) -> 'ServiceManager':
        return cls(
            settings.paths.service_name,
            runner=runner,
            verify_delay=settings.start_verify_seconds,
            kill_wait=settings.stop_kill_wait_seconds,
            sleep=sleep,
        )

    def _systemctl(self, *args, check: bool = True):
        return self.runner.run(['systemctl', *args], check=check)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_active(self) -> bool:
        return self._systemctl('is-active', '--quiet', self.name, check=False).ok

    def is_enabled(self) -> bool:
        return self._systemctl('is-enabled', '--quiet', self.name, check=False).ok

    def is_registered(self) -> bool:
        """True when systemd knows a unit file of this name."""
        result = self._systemctl('list-unit-files', '--no-legend', '--no-pager', check=False)
        if not result.ok:
            return False
        unit = f"{self.name}.service"
        return any(line.split()[0] == unit
                   for line in result.stdout.splitlines() if line.strip())

    def state(self) -> str:
        """running, stopped (enabled but inactive) or disabled."""
        if self.is_active():
            return RUNNING
        if self.is_enabled():
            return STOPPED
        return DISABLED

    def recent_logs(self, lines: int = 5) -> List[str]:
        result = self.runner.run(
            ['journalctl', '-u', self.name, '-n', str(lines), '--no-pager'],
            check=False,
        )
        if not result.ok:
            return []
        return [line for line in result.stdout.splitlines() if line.strip()]

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def daemon_reload(self):
        self._systemctl('daemon-reload')

    def enable(self):
        self._systemctl('enable', self.name)
        logger.info(f"Service {self.name} enabled")

    def disable(self):
        self._systemctl('disable', self.name)
        logger.info(f"Service {self.name} disabled")

    def stop(self, force: bool = False):
        """Stop the unit if it is active.

        With force, a failed graceful stop falls back to `systemctl kill`
        followed by a fixed wait; without it the failure propagates.
        """
        logger.info(f"Stopping {self.name} service...")
        if not self.is_active():
            logger.info("Service is not running")
            return

        try:
            self._systemctl('stop', self.name)
        except CommandError:
            if not force:
                raise
            logger.warning("Graceful stop failed, forcing termination...")
            self._systemctl('kill', self.name, check=False)
            self._sleep(self.kill_wait)
        logger.info("Service stopped successfully")

    def start(self) -> bool:
        """Reload units, start, wait, and poll once for the active state."""
        logger.info(f"Starting {self.name} service...")
        self.daemon_reload()

        result = self._systemctl('start', self.name, check=False)
        if not result.ok:
            logger.error("Failed to start service")
            logger.error(f"Check logs: journalctl -u {self.name} -n 50")
            return False

        self._sleep(self.verify_delay)
        if self.is_active():
            logger.info("Service started successfully")
            return True

        logger.error("Service failed to start properly")
        logger.error(f"Check logs: journalctl -u {self.name} -n 50")
        return False

    def restart(self) -> bool:
        logger.info(f"Restarting {self.name} service...")
        self.stop()
        return self.start()
