"""
Entry point for running devloop as a module.

Allows running as: python -m devloop
"""

from devloop.cli import cli_main

if __name__ == "__main__":
    cli_main()
