"""
Visitor Analytics - main entry point for python -m visitor_analytics
"""

import sys

from .cli import main


if __name__ == "__main__":
    sys.exit(main())
