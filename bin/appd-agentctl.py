#!/usr/bin/env python3
"""
AppDynamics Agent Control - checkout launcher

Usage:
    sudo python bin/appd-agentctl.py status
    sudo python bin/appd-agentctl.py upgrade /tmp/machineagent-bundle-64bit-linux.zip
"""

import sys
from pathlib import Path

# Setup paths
SCRIPT_DIR = Path(__file__).resolve().parent
sys.path.insert(0, str(SCRIPT_DIR.parent))

from appd_agentctl.cli import main

if __name__ == '__main__':
    sys.exit(main())
