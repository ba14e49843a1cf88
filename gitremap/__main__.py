"""Entry point for running gitremap as a module.

This module allows gitremap to be run as a Python module using the -m flag:
    python -m gitremap
"""

from . import cli

if __name__ == "__main__":
    cli._main()
