#!/usr/bin/env python3
"""
Account Ledger Service Entry Point

Starts the FastAPI server. The port defaults to 8080 and may be given as the
single positional argument:

    python run.py 9999
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from account_ledger.__main__ import main


if __name__ == "__main__":
    try:
        sys.exit(main(sys.argv[1:]))
    except KeyboardInterrupt:
        print("\nShutting down ledger service...")
