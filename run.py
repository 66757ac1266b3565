#!/usr/bin/env python3
"""
Practice Digest - Command Runner
This script sets up the Python path and dispatches to the digest CLI.

    python run.py init-db
    python run.py serve
    python run.py status --firm <firm-id> --date 2026-10-19
"""

import sys
import os

# Add the 'src' directory to Python path so imports work correctly
project_root = os.path.dirname(os.path.abspath(__file__))
src_path = os.path.join(project_root, 'src')

# Insert at beginning of path
if src_path not in sys.path:
    sys.path.insert(0, src_path)


if __name__ == "__main__":
    from tasks.cli import main

    sys.exit(main())
