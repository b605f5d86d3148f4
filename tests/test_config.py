#!/usr/bin/env python3
"""
Configuration loading: YAML merge over defaults, environment overrides and
the install-time fallbacks for controller settings.

Usage:
    python -m pytest tests/test_config.py -v
"""

import shutil
import sys
import tempfile
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from appd_agentctl.config import (
    DEFAULTS, ControllerSettings, build_settings, controller_from_env,
    load_config_file, load_settings, resolve_config_path,
)
from appd_agentctl.errors import ConfigurationError


class TestConfigFile(unittest.TestCase):

    def setUp(self):
        self.tmpdir = Path(tempfile.mkdtemp())

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_missing_file_means_defaults(self):
        raw = load_config_file(self.tmpdir / 'absent.yaml')
        self.assertEqual(raw['agent']['home'], DEFAULTS['agent']['home'])
        self.assertEqual(raw['service']['name'], 'appdynamics-machine-agent')

    def test_file_is_deep_merged(self):
        cfg = self.tmpdir / 'agentctl.yaml'
        cfg.write_text("agent:\n  home: /srv/appd\nservice:\n  start_verify_seconds: 1\n")
        raw = load_config_file(cfg)
        self.assertEqual(raw['agent']['home'], '/srv/appd')
        self.assertEqual(raw['agent']['directory'], 'machine-agent')
        self.assertEqual(raw['service']['start_verify_seconds'], 1)
        self.assertEqual(raw['service']['stop_kill_wait_seconds'], 2)

    def test_malformed_yaml_raises(self):
        cfg = self.tmpdir / 'bad.yaml'
        cfg.write_text("agent: [unclosed\n")
        with self.assertRaises(ConfigurationError):
            load_config_file(cfg)

    def test_non_mapping_raises(self):
        cfg = self.tmpdir / 'list.yaml'
        cfg.write_text("- one\n- two\n")
        with self.assertRaises(ConfigurationError):
            load_config_file(cfg)

    def test_explicit_missing_file_raises(self):
        with self.assertRaises(ConfigurationError):
            load_settings(str(self.tmpdir / 'nope.yaml'), environ={})

    def test_config_path_resolution(self):
        self.assertEqual(resolve_config_path('/a.yaml', {}), Path('/a.yaml'))
        self.assertEqual(
            resolve_config_path(None, {'APPD_AGENTCTL_CONFIG': '/b.yaml'}), Path('/b.yaml')
        )
        self.assertEqual(resolve_config_path(None, {}),
                         Path('/etc/appdynamics/agentctl.yaml'))

    def test_build_settings_paths(self):
        cfg = self.tmpdir / 'agentctl.yaml'
        cfg.write_text(
            "agent:\n  home: /opt/app\n  directory: agent\n  run_as_user: appd\n"
            "backups:\n  root: /var/backups/appd\n"
        )
        settings = load_settings(str(cfg), environ={})
        self.assertEqual(settings.paths.agent_dir, Path('/opt/app/agent'))
        self.assertEqual(settings.paths.controller_info,
                         Path('/opt/app/agent/conf/controller-info.xml'))
        self.assertEqual(settings.paths.backup_dir('x'), Path('/var/backups/appd/x'))
        self.assertEqual(settings.run_as_user, 'appd')
        self.assertEqual(settings.start_verify_seconds, 5)

    def test_invalid_value_raises(self):
        raw = load_config_file(None)
        raw['service']['start_verify_seconds'] = 'soon'
        with self.assertRaises(ConfigurationError):
            build_settings(raw, environ={})


class TestControllerSettings(unittest.TestCase):

    def test_yaml_booleans_rendered_lowercase(self):
        controller = controller_from_env({'ssl_enabled': True, 'sim_enabled': False}, {})
        self.assertEqual(controller.ssl_enabled, 'true')
        self.assertEqual(controller.sim_enabled, 'false')

    def test_prefixed_env_overrides_file(self):
        controller = controller_from_env(
            {'host': 'file.example.com'},
            {'APPDYNAMICS_CONTROLLER_HOST': 'env.example.com'},
        )
        self.assertEqual(controller.host, 'env.example.com')

    def test_unprefixed_env_accepted(self):
        controller = controller_from_env({}, {'CONTROLLER_HOST': 'new.example.com',
                                              'ACCESS_KEY': 'k'})
        self.assertEqual(controller.host, 'new.example.com')
        self.assertEqual(controller.access_key, 'k')

    def test_prefixed_wins_over_unprefixed(self):
        controller = controller_from_env({}, {'CONTROLLER_PORT': '8090',
                                              'APPDYNAMICS_CONTROLLER_PORT': '443'})
        self.assertEqual(controller.port, '443')

    def test_blank_env_is_not_supplied(self):
        controller = controller_from_env({'host': 'file.example.com'},
                                         {'APPDYNAMICS_CONTROLLER_HOST': '  '})
        self.assertEqual(controller.host, 'file.example.com')

    def test_supplied_only_lists_set_values(self):
        controller = ControllerSettings(host='h', tier_name='Web')
        self.assertEqual(controller.supplied(), {'host': 'h', 'tier_name': 'Web'})

    def test_missing_for_install(self):
        controller = ControllerSettings(host='h')
        self.assertEqual(controller.missing_for_install(), ['access_key', 'account_name'])

    def test_install_defaults_fill_gaps_only(self):
        controller = ControllerSettings(host='h', port='8181')
        filled = controller.with_install_defaults('web01.corp.example.com')
        self.assertEqual(filled.port, '8181')
        self.assertEqual(filled.ssl_enabled, 'true')
        self.assertEqual(filled.orchestration, 'false')
        self.assertEqual(filled.unique_host_id, 'web01')
        self.assertEqual(filled.node_name, 'web01.corp.example.com')
        self.assertEqual(filled.application_name, 'Application')
        self.assertEqual(filled.tier_name, 'App')
        self.assertIsNone(filled.sap_machine)
        self.assertIsNone(filled.machine_path)


if __name__ == '__main__':
    unittest.main()
