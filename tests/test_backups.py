#!/usr/bin/env python3
"""
Backup creation, listing and restore.
"""

import shutil
import sys
import tempfile
import unittest
from dataclasses import replace
from datetime import datetime
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))
sys.path.insert(0, str(Path(__file__).resolve().parent))

from appd_agentctl.backups import METADATA_FILE, BackupManager, read_metadata
from appd_agentctl.errors import AgentCtlError, BackupNotFoundError
from appd_agentctl.service import ServiceManager
from helpers import (
    CONTROLLER_INFO, SERVICE, SERVICE_UNIT, FakeRunner, make_settings, noop_sleep,
    snapshot, write_tree,
)


class BackupTestCase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = Path(tempfile.mkdtemp())
        self.settings = make_settings(self.tmpdir)
        self.paths = self.settings.paths
        self.runner = FakeRunner(active=[SERVICE], enabled=[SERVICE])
        self.service = ServiceManager.from_settings(self.settings, self.runner, noop_sleep)
        self.clock = lambda: datetime(2024, 3, 1, 14, 30, 5)
        self.manager = BackupManager(self.settings, self.service, clock=self.clock)

        write_tree(self.paths.agent_dir, {
            'VERSION': '21.1.0\n',
            'bin/machine-agent': '#!/bin/sh\n',
            'conf/controller-info.xml': CONTROLLER_INFO,
        })
        write_tree(self.paths.unit_dir, {self.paths.service_unit_name: SERVICE_UNIT})

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)


class TestCreateBackup(BackupTestCase):

    def test_default_name_is_timestamp(self):
        path = self.manager.create_backup()
        self.assertEqual(path, self.paths.backup_root / '20240301_143005')

    def test_contents_and_metadata(self):
        path = self.manager.create_backup('manual1')

        self.assertEqual(snapshot(path / 'machine-agent'), snapshot(self.paths.agent_dir))
        self.assertEqual((path / self.paths.service_unit_name).read_text(), SERVICE_UNIT)

        meta = read_metadata(path)
        self.assertEqual(meta['Backup Created'], '2024-03-01 14:30:05')
        self.assertEqual(meta['Agent Version'], '21.1.0')
        self.assertEqual(meta['Service Status'], 'running')
        self.assertEqual(meta['Backup Type'], 'Manual')
        self.assertIn('Hostname', meta)

    def test_existing_name_never_overwritten(self):
        first = self.manager.create_backup('same')
        marker = first / 'marker'
        marker.write_text('keep')
        second = self.manager.create_backup('same')
        self.assertNotEqual(first, second)
        self.assertEqual(marker.read_text(), 'keep')

    def test_invalid_name_rejected(self):
        with self.assertRaises(AgentCtlError):
            self.manager.create_backup('../escape')


class TestListBackups(BackupTestCase):

    def test_empty_when_root_missing(self):
        self.assertEqual(self.manager.list_backups(), [])

    def test_sorted_with_created(self):
        self.manager.create_backup('b_second')
        self.manager.create_backup('a_first')
        (self.paths.backup_root / 'c_no_meta').mkdir()

        backups = self.manager.list_backups()

        self.assertEqual([b.name for b in backups], ['a_first', 'b_second', 'c_no_meta'])
        self.assertEqual(backups[0].created, '2024-03-01 14:30:05')
        self.assertIsNone(backups[2].created)


class TestRestoreBackup(BackupTestCase):

    def test_round_trip_is_byte_identical(self):
        backup = self.manager.create_backup('snap')
        original = snapshot(self.paths.agent_dir)

        (self.paths.agent_dir / 'VERSION').write_text('99.0.0\n')
        (self.paths.agent_dir / 'extra.log').write_text('noise\n')
        self.paths.service_file.write_text('[Service]\nUser=changed\n')

        result = self.manager.restore_backup('snap')

        self.assertTrue(result.ok)
        self.assertEqual(snapshot(self.paths.agent_dir), original)
        self.assertEqual(snapshot(self.paths.agent_dir), snapshot(backup / 'machine-agent'))
        self.assertEqual(self.paths.service_file.read_text(), SERVICE_UNIT)

    def test_pre_restore_snapshot_taken(self):
        self.manager.create_backup('snap')
        (self.paths.agent_dir / 'VERSION').write_text('99.0.0\n')

        result = self.manager.restore_backup('snap')

        self.assertEqual(result.backup.name, 'pre_restore_143005')
        self.assertEqual((result.backup / 'machine-agent' / 'VERSION').read_text(), '99.0.0\n')
        self.assertEqual(read_metadata(result.backup)['Backup Type'], 'Pre-restore')

    def test_restore_restarts_service(self):
        self.manager.create_backup('snap')
        self.manager.restore_backup('snap')
        verbs = [c[0] for c in self.runner.systemctl()]
        self.assertIn('stop', verbs)
        self.assertIn('daemon-reload', verbs)
        self.assertEqual(verbs[-2:], ['start', 'is-active'])

    def test_start_failure_is_a_warning(self):
        self.manager.create_backup('snap')
        self.runner.start_ok = False

        result = self.manager.restore_backup('snap')

        self.assertTrue(result.ok)
        self.assertEqual(result.exit_code, 0)
        self.assertEqual(result.details['service_started'], 'false')
        self.assertTrue(any('failed to start' in w for w in result.warnings))

    def test_missing_backup(self):
        with self.assertRaises(BackupNotFoundError):
            self.manager.restore_backup('does-not-exist')
        self.assertEqual(self.runner.calls, [])

    def test_names_outside_backup_root_rejected(self):
        paths = replace(self.paths, backup_root=self.paths.home / 'backups')
        manager = BackupManager(replace(self.settings, paths=paths), self.service,
                                clock=self.clock)
        manager.create_backup('snap')
        before = snapshot(self.paths.agent_dir)
        self.runner.calls.clear()

        for name in ('..', '.', '', '../backups'):
            with self.assertRaises(BackupNotFoundError):
                manager.restore_backup(name)

        self.assertEqual(snapshot(self.paths.agent_dir), before)
        self.assertEqual(self.runner.calls, [])

    def test_backups_not_modified_by_restore(self):
        backup = self.manager.create_backup('snap')
        before = snapshot(backup)
        self.manager.restore_backup('snap')
        self.assertEqual(snapshot(backup), before)
        self.assertTrue((backup / METADATA_FILE).is_file())


if __name__ == '__main__':
    unittest.main()
