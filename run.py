#!/usr/bin/env python3
"""Convenience script to run the device terminal client."""

import asyncio
import sys

from devterm.app import main as _main


def main():
    sys.exit(asyncio.run(_main()))

if __name__ == "__main__":
    main()
