#!/usr/bin/env python3
"""
AppDynamics Agent Control - Controller Truststore Resolver
Builds conf/truststore.jks from the certificate chain the controller presents
and points the agent's startup script at it.

Steps:
1. Find the running machineagent.jar process and derive the agent home
2. Read controller-host/controller-port from controller-info.xml
3. keytool -printcert -sslserver host:port -rfc
4. Split the chain into cert00.pem, cert01.pem, ...
5. Import each into a fresh truststore.jks and list it
6. Inject -Djavax.net.ssl.trustStore options into bin/machine-agent
7. Restart the service
"""

import os
import re
import tempfile
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

import psutil

from .config import AgentSettings
from .controller_info import read_fields
from .errors import (
    AgentCtlError, AgentNotRunningError, ConfigurationError, MissingDependencyError,
    ServiceStartError,
)
from .logger import get_logger
from .paths import AgentPaths
from .results import OperationResult
from .runner import CommandRunner
from .service import ServiceManager

logger = get_logger('truststore')

JAR_NAME = 'machineagent.jar'
TRUSTSTORE_MARKER = 'javax.net.ssl.trustStore'

_PEM_BLOCK = re.compile(
    r'-----BEGIN CERTIFICATE-----.*?-----END CERTIFICATE-----', re.DOTALL
)
_JAVA_OPTS_XMX = re.compile(r'(JAVA_OPTS.*-Xmx256m)')


def jar_from_cmdline(cmdline: Sequence[str]) -> Optional[Path]:
    """The machineagent.jar path following -jar, if any."""
    for flag, value in zip(cmdline, cmdline[1:]):
        if flag == '-jar' and value.endswith(JAR_NAME):
            return Path(value)
    return None


def find_agent_process(process_iter: Callable[..., Iterable] = psutil.process_iter
                       ) -> Tuple[int, Path]:
    """Locate the running agent. Returns (pid, resolved jar path)."""
    for proc in process_iter(['pid', 'cmdline']):
        jar = jar_from_cmdline(proc.info.get('cmdline') or [])
        if jar is not None:
            return proc.info['pid'], jar.resolve()
    raise AgentNotRunningError(
        f"Could not find a running {JAR_NAME} process",
        hint="Start the Machine Agent first",
    )


def split_pem_chain(text: str) -> List[str]:
    """Individual certificates from keytool -rfc output, in chain order."""
    return [block + '\n' for block in _PEM_BLOCK.findall(text)]


def truststore_options(password: str) -> str:
    return (f"-Djavax.net.ssl.trustStore=${{MACHINE_AGENT_HOME}}/conf/truststore.jks "
            f"-Djavax.net.ssl.trustStorePassword={password}")


def patch_startup_script(script: Path, password: str) -> bool:
    """Append truststore options after the JAVA_OPTS -Xmx256m token.

    Returns True when the script was changed.
    """
    text = script.read_text()
    if TRUSTSTORE_MARKER in text:
        logger.info("Truststore config already present in machine-agent script.")
        return False

    options = truststore_options(password)
    patched, count = _JAVA_OPTS_XMX.subn(lambda m: f"{m.group(1)} {options}", text)
    if not count:
        logger.warning(f"No 'JAVA_OPTS ... -Xmx256m' line in {script}; not patched")
        return False

    script.write_text(patched)
    logger.info("Injected truststore config into machine-agent script")
    return True


class TruststoreResolver:
    """Rebuild the agent truststore from the live controller chain."""

    def __init__(self, settings: AgentSettings, service: ServiceManager,
                 runner: CommandRunner = None,
                 process_iter: Callable[..., Iterable] = psutil.process_iter):
        self.settings = settings
        self.service = service
        self.runner = runner or service.runner
        self.process_iter = process_iter

    def discover(self) -> AgentPaths:
        pid, jar = find_agent_process(self.process_iter)
        paths = self.settings.paths.for_agent_home(jar.parent)
        logger.info(f"Discovered MACHINE_AGENT_HOME: {paths.agent_dir} (pid {pid})")
        return paths

    def controller_endpoint(self, paths: AgentPaths) -> str:
        if not paths.controller_info.is_file():
            raise ConfigurationError(
                f"Cannot find controller-info.xml at {paths.controller_info}"
            )
        values = read_fields(paths.controller_info, ('controller-host', 'controller-port'))
        host = values['controller-host']
        if not host:
            raise ConfigurationError(
                f"Could not extract controller host from {paths.controller_info}"
            )
        port = values['controller-port']
        endpoint = f"{host}:{port}" if port else host
        logger.info(f"Discovered Controller: {endpoint}")
        return endpoint

    def _keytool(self, paths: AgentPaths, *args, check: bool = True):
        return self.runner.run([str(paths.keytool), *args], check=check)

    def build_truststore(self, paths: AgentPaths, certs: List[str]):
        """Import every certificate into a new truststore.jks."""
        password = self.settings.truststore_password
        if paths.truststore.exists():
            paths.truststore.unlink()

        with tempfile.TemporaryDirectory(prefix='appd-certs-') as work:
            for index, cert in enumerate(certs):
                alias = f"cert{index:02d}"
                pem = Path(work) / f"{alias}.pem"
                pem.write_text(cert)
                logger.info(f"Importing {pem.name}...")
                self._keytool(
                    paths, '-import', '-noprompt', '-alias', alias,
                    '-file', str(pem), '-keystore', str(paths.truststore),
                    '-storepass', password,
                )

        listing = self._keytool(
            paths, '-list', '-keystore', str(paths.truststore), '-storepass', password
        )
        for line in listing.stdout.splitlines():
            if line.strip():
                logger.info(f"  {line.strip()}")

    def resolve(self) -> OperationResult:
        result = OperationResult('resolve-ssl')
        paths = self.discover()
        endpoint = self.controller_endpoint(paths)

        if not os.access(paths.keytool, os.X_OK):
            raise MissingDependencyError(f"Cannot find keytool at {paths.keytool}")

        logger.info("Downloading the controller certificate chain...")
        output = self._keytool(paths, '-printcert', '-sslserver', endpoint, '-rfc').stdout
        certs = split_pem_chain(output)
        if not certs:
            raise AgentCtlError(f"Controller {endpoint} did not present any certificates")
        logger.info(f"Controller presented {len(certs)} certificate(s)")
        result.details['certificates'] = str(len(certs))

        self.build_truststore(paths, certs)
        result.details['truststore'] = str(paths.truststore)

        if paths.startup_script.is_file():
            patch_startup_script(paths.startup_script, self.settings.truststore_password)
        else:
            result.warn(f"Startup script not found: {paths.startup_script}")

        if not self.service.restart():
            raise ServiceStartError(
                "Machine Agent did not come back after the truststore update",
                hint=f"Check logs: journalctl -u {self.service.name} -n 50",
            )
        logger.info("Done. Machine Agent is now using the updated truststore.")
        return result
