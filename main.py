#!/usr/bin/env python3
"""
ESXi SSLv3 Security Protocol Reconfiguration Tool

- Disable SSLv3 on ESXi 5.x host services (--disable-legacy)
- Re-enable SSLv3 alongside TLS (--enable-legacy)

Every service on a host is rolled back to its previous protocols if any one
of them fails to reconfigure.

This script runs the CLI straight from a source checkout by adding the local
`src/` directory to sys.path. For production use, prefer installing the
project and using the `tls-reconfig` console script.
"""

import os
import sys

# Add src/ to path to import modules directly
REPO_ROOT = os.path.dirname(os.path.abspath(__file__))
SRC_PATH = os.path.join(REPO_ROOT, "src")
if SRC_PATH not in sys.path:
    sys.path.insert(0, SRC_PATH)

from cli import main

if __name__ == "__main__":
    sys.exit(main())
