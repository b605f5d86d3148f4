"""
Shared fixtures for the appd-agentctl test suites: a scripted stand-in for
systemctl/journalctl/keytool, temp-rooted settings and agent bundle builders.
"""

import zipfile
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from appd_agentctl.config import AgentSettings, ControllerSettings
from appd_agentctl.errors import CommandError
from appd_agentctl.paths import AgentPaths
from appd_agentctl.preconditions import current_user
from appd_agentctl.runner import CommandResult, CommandRunner

SERVICE = 'appdynamics-machine-agent'

CONTROLLER_INFO = """<?xml version="1.0" encoding="UTF-8"?>
<controller-info>
    <!-- Controller connection -->
    <controller-host>REPLACE_ME</controller-host>
    <controller-port>REPLACE_ME</controller-port>
    <controller-ssl-enabled>false</controller-ssl-enabled>
    <enable-orchestration>false</enable-orchestration>
    <unique-host-id>REPLACE_ME</unique-host-id>
    <!-- Account -->
    <account-access-key>REPLACE_ME</account-access-key>
    <account-name>REPLACE_ME</account-name>
    <sim-enabled>false</sim-enabled>
    <machine-path></machine-path>
</controller-info>
"""

SERVICE_UNIT = """[Unit]
Description=AppDynamics Machine Agent

[Service]
Type=simple
User=appdynamics-machine-agent
Environment=MACHINE_AGENT_USER=appdynamics-machine-agent
ExecStart=/opt/appdynamics/machine-agent/bin/machine-agent

[Install]
WantedBy=multi-user.target
"""

STARTUP_SCRIPT = """#!/bin/sh
MACHINE_AGENT_HOME=/opt/appdynamics/machine-agent
JAVA_OPTS="$JAVA_OPTS -Xms64m -Xmx256m"
exec java $JAVA_OPTS -jar $MACHINE_AGENT_HOME/machineagent.jar
"""


def noop_sleep(seconds):
    pass


class FakeRunner(CommandRunner):
    """Records every command and answers systemctl/journalctl from state."""

    def __init__(self, active: Iterable[str] = (), enabled: Iterable[str] = (),
                 registered: bool = True, start_ok: bool = True,
                 missing: Iterable[str] = ()):
        super().__init__()
        self.calls: List[List[str]] = []
        self.active = set(active)
        self.enabled = set(enabled)
        self.registered = registered
        self.start_ok = start_ok
        self.missing = set(missing)
        self.journal = ['-- Logs begin --', 'Started AppDynamics Machine Agent.']
        self.handlers: Dict[str, Callable[[List[str]], CommandResult]] = {}

    def on(self, program: str, handler: Callable[[List[str]], CommandResult]):
        """Answer calls to program (matched by basename) with handler."""
        self.handlers[program] = handler

    def which(self, name: str) -> Optional[str]:
        return None if name in self.missing else f'/usr/bin/{name}'

    def run(self, args, check=True, timeout=None) -> CommandResult:
        args = [str(a) for a in args]
        self.calls.append(args)
        result = self._answer(args)
        if check and not result.ok:
            raise CommandError(args, result.returncode, result.stdout, result.stderr)
        return result

    def systemctl(self) -> List[List[str]]:
        return [c[1:] for c in self.calls if c[0] == 'systemctl']

    def _answer(self, args: List[str]) -> CommandResult:
        program = Path(args[0]).name
        if program in self.handlers:
            return self.handlers[program](args)
        if program == 'systemctl':
            return self._systemctl(args)
        if program == 'journalctl':
            return CommandResult(args, 0, '\n'.join(self.journal) + '\n')
        return CommandResult(args, 0)

    def _systemctl(self, args: List[str]) -> CommandResult:
        verb, unit = args[1], args[-1]
        rc = 0
        stdout = ''
        if verb == 'is-active':
            rc = 0 if unit in self.active else 3
        elif verb == 'is-enabled':
            rc = 0 if unit in self.enabled else 1
        elif verb == 'start':
            if self.start_ok:
                self.active.add(unit)
        elif verb in ('stop', 'kill'):
            self.active.discard(unit)
        elif verb == 'enable':
            self.enabled.add(unit)
        elif verb == 'disable':
            self.enabled.discard(unit)
        elif verb == 'list-unit-files':
            if self.registered:
                stdout = f"{SERVICE}.service enabled enabled\nsshd.service enabled enabled\n"
        return CommandResult(args, rc, stdout)


def make_settings(root: Path, home: str = 'opt/appdynamics',
                  agent_dirname: str = 'machine-agent',
                  controller: ControllerSettings = None, **overrides) -> AgentSettings:
    """Settings rooted under a temp directory, runnable as the current user."""
    root = Path(root)
    paths = AgentPaths(
        home=root / home,
        agent_dirname=agent_dirname,
        backup_root=root / 'backups',
        unit_dir=root / 'systemd',
        package_dir=root / 'tmp',
        log_file=root / 'log' / 'appdynamics-management.log',
    )
    user = current_user()
    values = dict(
        paths=paths,
        controller=controller or ControllerSettings(),
        run_as_user=user,
        required_user=user,
        start_verify_seconds=0,
        stop_kill_wait_seconds=0,
    )
    values.update(overrides)
    return AgentSettings(**values)


def bundle_files(version: str = '21.1.0', controller_info: str = CONTROLLER_INFO
                 ) -> Dict[str, str]:
    return {
        'VERSION': f'{version}\n',
        'bin/machine-agent': STARTUP_SCRIPT,
        'conf/controller-info.xml': controller_info,
        'conf/logging/log4j.xml': '<configuration/>\n',
        f'etc/systemd/system/{SERVICE}.service': SERVICE_UNIT,
        'lib/agent.txt': f'agent build {version}\n',
    }


def make_bundle(path: Path, version: str = '21.1.0', top_dir: str = None,
                files: Dict[str, str] = None) -> Path:
    """Write a machineagent-bundle zip, optionally under one top-level directory."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    files = files if files is not None else bundle_files(version)
    with zipfile.ZipFile(path, 'w') as zf:
        for name, content in files.items():
            arcname = f"{top_dir}/{name}" if top_dir else name
            zf.writestr(arcname, content)
    return path


def write_tree(root: Path, files: Dict[str, str]):
    for name, content in files.items():
        target = Path(root) / name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)


def snapshot(root: Path) -> Dict[str, bytes]:
    """Relative path -> bytes for every file under root."""
    root = Path(root)
    return {str(p.relative_to(root)): p.read_bytes()
            for p in sorted(root.rglob('*')) if p.is_file()}
