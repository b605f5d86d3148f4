#!/usr/bin/env python3
"""
AppDynamics Agent Control - External Command Runner
All subprocess calls go through one place so they are logged uniformly and
can be replaced by a fake in tests.
"""

import shutil
import subprocess
from dataclasses import dataclass
from typing import Optional, Sequence

from .errors import CommandError, MissingDependencyError
from .logger import get_logger

logger = get_logger('runner')


@dataclass
class CommandResult:
    args: Sequence[str]
    returncode: int
    stdout: str = ''
    stderr: str = ''

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """Synchronous subprocess wrapper."""

    def __init__(self, timeout: Optional[float] = 300):
        self.timeout = timeout

    def which(self, name: str) -> Optional[str]:
        return shutil.which(name)

    def run(self, args: Sequence[str], check: bool = True,
            timeout: Optional[float] = None) -> CommandResult:
        """Run a command to completion and capture its output.

        With check=True a non-zero exit raises CommandError; otherwise the
        caller inspects the returned result.
        """
        args = [str(a) for a in args]
        logger.debug(f"exec: {' '.join(args)}")
        try:
            proc = subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=timeout or self.timeout,
            )
        except FileNotFoundError as e:
            raise MissingDependencyError(f"Executable not found: {args[0]}") from e
        except subprocess.TimeoutExpired as e:
            raise CommandError(args, -1, stderr=f"timed out after {e.timeout}s") from e

        result = CommandResult(args, proc.returncode, proc.stdout or '', proc.stderr or '')
        if check and not result.ok:
            raise CommandError(args, result.returncode, result.stdout, result.stderr)
        return result
