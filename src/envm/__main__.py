"""
Entry point for running envm as a module.

Usage:
    python -m envm [command] [options]
"""

from envm.cli import main

if __name__ == "__main__":
    main()
