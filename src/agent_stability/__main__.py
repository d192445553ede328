"""
Allow running the package as a module:
    python -m agent_stability status
    python -m agent_stability score "actually that's wrong" "fair point"
"""

import sys

from agent_stability.cli import main

if __name__ == '__main__':
    sys.exit(main())
