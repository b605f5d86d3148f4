#!/usr/bin/env python3
"""
AppDynamics custom metric probes - checkout launcher

Point a Machine Agent script monitor at this file, e.g.:
    python bin/appd-metrics.py service
    python bin/appd-metrics.py process -c processes.json --details
"""

import sys
from pathlib import Path

# Setup paths
SCRIPT_DIR = Path(__file__).resolve().parent
sys.path.insert(0, str(SCRIPT_DIR.parent))

from appd_agentctl.monitors import main

if __name__ == '__main__':
    sys.exit(main())
