#!/usr/bin/env python3
"""
AppDynamics Agent Control - Agent Bundle Handling
Locating machineagent-bundle archives and unpacking them.
"""

import shutil
import tarfile
import zipfile
from pathlib import Path
from typing import List, Optional

from .errors import ExtractionError, PackageNotFoundError
from .logger import get_logger

logger = get_logger('packages')


def _candidates(search_dir: Path, pattern: str) -> List[Path]:
    if not search_dir.is_dir():
        return []
    top = sorted(p for p in search_dir.glob(pattern) if p.is_file())
    nested = sorted(p for p in search_dir.glob(f"*/{pattern}") if p.is_file())
    return top + nested


def locate_package(explicit: Optional[str], search_dir: Path, pattern: str) -> Path:
    """Return the bundle to install.

    An explicit path must exist. Otherwise search_dir and its immediate
    subdirectories are searched; the first match wins.
    """
    if explicit:
        path = Path(explicit)
        if path.is_file():
            return path
        raise PackageNotFoundError(f"Specified package not found: {path}")

    matches = _candidates(Path(search_dir), pattern)
    if not matches:
        raise PackageNotFoundError(
            f"No agent package matching '{pattern}' found in {search_dir}",
            hint=f"Specify the package path or place it in {search_dir}",
        )
    if len(matches) > 1:
        logger.warning(
            f"Found {len(matches)} packages matching '{pattern}'; using {matches[0].name}"
        )
        for extra in matches[1:]:
            logger.warning(f"  ignored: {extra}")
    return matches[0]


def _extract_zip(archive: Path, dest: Path):
    with zipfile.ZipFile(archive) as zf:
        for member in zf.infolist():
            target = zf.extract(member, dest)
            # keep executable bits recorded by the bundle
            mode = (member.external_attr >> 16) & 0o777
            if mode:
                Path(target).chmod(mode)


def extract_archive(archive: Path, dest: Path):
    """Unpack a zip (or tar) bundle into dest."""
    archive = Path(archive)
    dest = Path(dest)
    dest.mkdir(parents=True, exist_ok=True)
    logger.info(f"Extracting {archive.name} into {dest}...")
    try:
        if zipfile.is_zipfile(archive):
            _extract_zip(archive, dest)
        elif tarfile.is_tarfile(archive):
            with tarfile.open(archive) as tar:
                if hasattr(tarfile, 'data_filter'):
                    tar.extractall(path=dest, filter='data')
                else:
                    tar.extractall(path=dest)
        else:
            raise ExtractionError(f"Unrecognized archive format: {archive}")
    except (zipfile.BadZipFile, tarfile.TarError, OSError) as e:
        raise ExtractionError(f"Failed to extract agent package {archive}: {e}") from e


def flatten_bundle_dir(dest: Path, prefix: str = 'machineagent'):
    """Move contents of a single top-level machineagent* directory up one level."""
    subdirs = [p for p in dest.iterdir() if p.is_dir() and p.name.startswith(prefix)]
    if len(subdirs) != 1:
        return
    subdir = subdirs[0]
    for child in subdir.iterdir():
        target = dest / child.name
        if target.exists():
            logger.warning(f"Not overwriting {target} while flattening bundle")
            continue
        shutil.move(str(child), str(target))
    try:
        subdir.rmdir()
    except OSError:
        logger.warning(f"Left non-empty bundle directory in place: {subdir}")


def find_agent_root(extract_dir: Path) -> Path:
    """Locate the unpacked agent: the directory holding bin/, at most one level down."""
    extract_dir = Path(extract_dir)
    if (extract_dir / 'bin').is_dir():
        return extract_dir
    for child in sorted(extract_dir.iterdir()):
        if child.is_dir() and (child / 'bin').is_dir():
            return child
    raise ExtractionError(
        f"Could not find a valid agent structure (no bin/ directory) in {extract_dir}"
    )
