#!/usr/bin/env python3
"""Sealpost — end-to-end encrypted messages over a public pub/sub relay.

Usage:
    python run.py keygen bob
    python run.py send bob notes.txt
    python run.py receive bob
    python run.py --relay http://localhost:8080 receive bob --all

Run `python run.py --help` for every option.
"""

import sys

from sealpost.cli import main

if __name__ == "__main__":
    sys.exit(main())
