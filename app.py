#!/usr/bin/env python3
"""
Badge Printer - Flask service that queues and prints personalized badges
Runs next to a thermal printer; see `python -m badge_printer --help`
"""

from badge_printer.__main__ import main

if __name__ == "__main__":
    raise SystemExit(main())
