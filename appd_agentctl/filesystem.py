#!/usr/bin/env python3
"""Filesystem helpers shared by install, backup and removal."""

import os
import pwd
import shutil
from pathlib import Path

from .errors import ConfigurationError
from .logger import get_logger

logger = get_logger('filesystem')


def normalize_permissions(root: Path, user: str, mode: int = 0o755):
    """chown -R user:<primary group> and chmod -R mode over a tree."""
    try:
        entry = pwd.getpwnam(user)
    except KeyError as e:
        raise ConfigurationError(f"Run-as user does not exist: {user}") from e

    root = Path(root)
    targets = [root]
    for dirpath, dirnames, filenames in os.walk(root):
        base = Path(dirpath)
        targets.extend(base / name for name in dirnames + filenames)

    for path in targets:
        if path.is_symlink():
            continue
        os.chown(path, entry.pw_uid, entry.pw_gid)
        path.chmod(mode)
    logger.info(f"Permissions set on {root} ({user}, {oct(mode)[2:]})")


def copy_tree(src: Path, dest: Path):
    """Copy a directory tree, keeping symlinks as links."""
    shutil.copytree(src, dest, symlinks=True)


def clear_except(root: Path, keep: str):
    """Delete everything under root except the top-level entry named keep."""
    for child in Path(root).iterdir():
        if child.name == keep:
            continue
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            child.unlink()


def merge_tree(src: Path, dest: Path):
    """Copy src's contents over dest (cp -r src/* dest/)."""
    dest.mkdir(parents=True, exist_ok=True)
    for child in Path(src).iterdir():
        target = dest / child.name
        if child.is_dir() and not child.is_symlink():
            shutil.copytree(child, target, symlinks=True, dirs_exist_ok=True)
        else:
            shutil.copy2(child, target, follow_symlinks=False)
