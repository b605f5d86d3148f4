#!/usr/bin/env python3
"""
Truststore resolver: agent discovery, PEM chain splitting, keytool calls and
the startup script patch.
"""

import shutil
import sys
import tempfile
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))
sys.path.insert(0, str(Path(__file__).resolve().parent))

from appd_agentctl.errors import (
    AgentNotRunningError, ConfigurationError, MissingDependencyError,
)
from appd_agentctl.runner import CommandResult
from appd_agentctl.service import ServiceManager
from appd_agentctl.truststore import (
    TruststoreResolver, find_agent_process, jar_from_cmdline, patch_startup_script,
    split_pem_chain,
)
from helpers import (
    CONTROLLER_INFO, SERVICE, STARTUP_SCRIPT, FakeRunner, make_settings, noop_sleep,
    write_tree,
)

CHAIN = """Certificate #0
-----BEGIN CERTIFICATE-----
MIIBleafcertificatebody
-----END CERTIFICATE-----
Certificate #1
-----BEGIN CERTIFICATE-----
MIIBintermediatebody
-----END CERTIFICATE-----
"""


class FakeProc:
    def __init__(self, pid, cmdline):
        self.info = {'pid': pid, 'name': Path(cmdline[0]).name if cmdline else '',
                     'cmdline': cmdline}


def fake_iter(procs):
    def process_iter(attrs=None):
        return iter(procs)
    return process_iter


class TestHelpers(unittest.TestCase):

    def test_jar_from_cmdline(self):
        cmd = ['java', '-Xmx256m', '-jar', '/opt/appdynamics/machine-agent/machineagent.jar']
        self.assertEqual(jar_from_cmdline(cmd),
                         Path('/opt/appdynamics/machine-agent/machineagent.jar'))
        self.assertIsNone(jar_from_cmdline(['java', '-jar', '/srv/other.jar']))
        self.assertIsNone(jar_from_cmdline([]))

    def test_find_agent_process(self):
        procs = [
            FakeProc(10, ['/usr/sbin/sshd']),
            FakeProc(42, ['java', '-jar', '/opt/ma/machineagent.jar']),
        ]
        pid, jar = find_agent_process(fake_iter(procs))
        self.assertEqual(pid, 42)
        self.assertEqual(jar.name, 'machineagent.jar')

    def test_no_agent_process(self):
        with self.assertRaises(AgentNotRunningError):
            find_agent_process(fake_iter([FakeProc(1, ['init']), FakeProc(2, [])]))

    def test_split_pem_chain(self):
        certs = split_pem_chain(CHAIN)
        self.assertEqual(len(certs), 2)
        self.assertTrue(certs[0].startswith('-----BEGIN CERTIFICATE-----'))
        self.assertIn('leaf', certs[0])
        self.assertIn('intermediate', certs[1])
        self.assertEqual(split_pem_chain('no certs here'), [])


class TestPatchStartupScript(unittest.TestCase):

    def setUp(self):
        self.tmpdir = Path(tempfile.mkdtemp())
        self.script = self.tmpdir / 'machine-agent'
        self.script.write_text(STARTUP_SCRIPT)

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_options_injected_after_xmx(self):
        self.assertTrue(patch_startup_script(self.script, 'changeit'))
        text = self.script.read_text()
        self.assertIn(
            '-Xmx256m -Djavax.net.ssl.trustStore=${MACHINE_AGENT_HOME}/conf/truststore.jks '
            '-Djavax.net.ssl.trustStorePassword=changeit', text
        )

    def test_idempotent(self):
        patch_startup_script(self.script, 'changeit')
        once = self.script.read_text()
        self.assertFalse(patch_startup_script(self.script, 'changeit'))
        self.assertEqual(self.script.read_text(), once)

    def test_no_java_opts_line(self):
        self.script.write_text('#!/bin/sh\nexec java -jar machineagent.jar\n')
        self.assertFalse(patch_startup_script(self.script, 'changeit'))
        self.assertNotIn('trustStore', self.script.read_text())


class TestResolver(unittest.TestCase):

    def setUp(self):
        self.tmpdir = Path(tempfile.mkdtemp())
        self.settings = make_settings(self.tmpdir)
        self.agent_dir = self.tmpdir / 'discovered' / 'machine-agent'
        write_tree(self.agent_dir, {
            'machineagent.jar': 'jar',
            'bin/machine-agent': STARTUP_SCRIPT,
            'jre/bin/keytool': '#!/bin/sh\n',
            'conf/controller-info.xml': CONTROLLER_INFO.replace(
                '<controller-host>REPLACE_ME', '<controller-host>ctrl.example.com'
            ).replace('<controller-port>REPLACE_ME', '<controller-port>443'),
        })
        (self.agent_dir / 'jre' / 'bin' / 'keytool').chmod(0o755)

        self.runner = FakeRunner(active=[SERVICE], enabled=[SERVICE])
        self.runner.on('keytool', self.keytool)
        self.service = ServiceManager.from_settings(self.settings, self.runner, noop_sleep)
        procs = [FakeProc(7, ['java', '-jar', str(self.agent_dir / 'machineagent.jar')])]
        self.resolver = TruststoreResolver(self.settings, self.service,
                                           process_iter=fake_iter(procs))
        self.imported = []

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def keytool(self, args):
        if '-printcert' in args:
            return CommandResult(args, 0, CHAIN)
        if '-import' in args:
            pem = Path(args[args.index('-file') + 1])
            self.imported.append((args[args.index('-alias') + 1], pem.read_text()))
        return CommandResult(args, 0, 'Keystore type: JKS\n')

    def keytool_calls(self):
        return [c for c in self.runner.calls if Path(c[0]).name == 'keytool']

    def test_full_run(self):
        result = self.resolver.resolve()

        calls = self.keytool_calls()
        self.assertEqual(calls[0][1:], ['-printcert', '-sslserver', 'ctrl.example.com:443', '-rfc'])
        self.assertEqual([alias for alias, _ in self.imported], ['cert00', 'cert01'])
        self.assertIn('leaf', self.imported[0][1])
        self.assertIn('-list', calls[-1])
        truststore = str(self.agent_dir.resolve() / 'conf' / 'truststore.jks')
        self.assertIn(truststore, calls[-1])
        self.assertIn('changeit', calls[-1])

        self.assertIn('javax.net.ssl.trustStore',
                      (self.agent_dir / 'bin' / 'machine-agent').read_text())
        verbs = [c[0] for c in self.runner.systemctl()]
        self.assertLess(verbs.index('stop'), verbs.index('start'))
        self.assertEqual(result.details['certificates'], '2')

    def test_missing_config(self):
        (self.agent_dir / 'conf' / 'controller-info.xml').unlink()
        with self.assertRaises(ConfigurationError):
            self.resolver.resolve()

    def test_missing_host(self):
        (self.agent_dir / 'conf' / 'controller-info.xml').write_text(
            '<controller-info><controller-host></controller-host></controller-info>'
        )
        with self.assertRaises(ConfigurationError):
            self.resolver.resolve()

    def test_missing_keytool(self):
        (self.agent_dir / 'jre' / 'bin' / 'keytool').unlink()
        with self.assertRaises(MissingDependencyError):
            self.resolver.resolve()
        self.assertEqual(self.keytool_calls(), [])


if __name__ == '__main__':
    unittest.main()
