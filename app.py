#!/usr/bin/env python3
"""
Engagement Oracle - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
This is the ONE executable entry point for the oracle process.

- Compatible with PM2 process management
- Can be started, stopped, and restarted safely
- Handles SIGINT/SIGTERM gracefully (in-flight runs finish)
- Wires index, verification, aggregation, external sources,
  ledger and scheduler into one controlled runtime

============================================================
USAGE
============================================================
Direct execution:
    python app.py
    python app.py --single-cycle --dry-run

With PM2:
    pm2 start app.py --interpreter python --name engagement-oracle

Environment-based configuration (.env is loaded first):
    TICK_INTERVAL_SECONDS=600 LOG_FORMAT=text python app.py

============================================================
PM2 ECOSYSTEM CONFIG (ecosystem.config.js)
============================================================
module.exports = {
    apps: [{
        name: 'engagement-oracle',
        script: 'app.py',
        interpreter: 'python',
        env: {
            LOG_LEVEL: 'INFO',
            EXTERNAL_ENCLAVE_URL: 'http://localhost:3000',
        },
        env_production: {
            LOG_LEVEL: 'WARNING',
        },
        max_restarts: 10,
        restart_delay: 5000,
        watch: false,
    }]
};

============================================================
"""

import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.absolute()
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from scheduler.cli import main


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
