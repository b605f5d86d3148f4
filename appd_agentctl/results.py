#!/usr/bin/env python3
"""
AppDynamics Agent Control - Operation Results
Fatal failures raise AgentCtlError; everything a step could not do but the
operation survived is recorded here as an advisory warning.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .logger import get_logger

logger = get_logger('results')


@dataclass
class OperationResult:
    operation: str
    ok: bool = True
    cancelled: bool = False
    backup: Optional[Path] = None
    warnings: List[str] = field(default_factory=list)
    details: Dict[str, str] = field(default_factory=dict)

    def warn(self, message: str):
        """Record and log an advisory failure."""
        self.warnings.append(message)
        logger.warning(message)

    def fail(self, message: str):
        """Mark the operation failed without raising."""
        self.ok = False
        self.warnings.append(message)
        logger.error(message)

    @property
    def exit_code(self) -> int:
        return 0 if self.ok or self.cancelled else 1
