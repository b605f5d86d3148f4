#!/usr/bin/env python3
"""Installed Machine Agent version detection."""

import zipfile
from pathlib import Path

from .paths import AgentPaths

UNKNOWN = 'Unknown'
MANIFEST = 'META-INF/MANIFEST.MF'


def _manifest_version(jar: Path) -> str:
    try:
        with zipfile.ZipFile(jar) as zf:
            manifest = zf.read(MANIFEST).decode('utf-8', errors='replace')
    except (KeyError, OSError, zipfile.BadZipFile):
        return UNKNOWN
    for line in manifest.splitlines():
        key, sep, value = line.partition(':')
        if sep and key.strip().lower() == 'implementation-version':
            return value.strip() or UNKNOWN
    return UNKNOWN


def detect_agent_version(paths: AgentPaths) -> str:
    """VERSION sidecar first, then the jar manifest, else Unknown."""
    if paths.version_file.is_file():
        text = paths.version_file.read_text(errors='replace').strip()
        return text or UNKNOWN
    if paths.agent_jar.is_file():
        return _manifest_version(paths.agent_jar)
    return UNKNOWN
