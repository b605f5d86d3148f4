"""
AppDynamics Agent Control - Machine Agent lifecycle toolkit
"""

__version__ = '1.0.0'

from .config import AgentSettings, load_settings
from .logger import get_logger

__all__ = [
    '__version__',
    'AgentSettings', 'load_settings',
    'get_logger',
]
