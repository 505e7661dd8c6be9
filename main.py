#!/usr/bin/env python3
"""
Self-hosted CI runner fleet controller.

- build-image: bake a golden runner image
- deploy / teardown: replace or remove the runner instance group
- prune-runners: remove offline runner identities
- agent: on-instance registration and idle shutdown

Runs directly from a source checkout by adding the local `src/` directory to
sys.path. For production use, install the project and use the `runner-fleet`
console script.
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
