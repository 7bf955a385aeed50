#!/usr/bin/env python3
"""
Entry point for the cache CLI.

Run with: python -m client
"""

from .cli import cli

if __name__ == '__main__':
    cli()
