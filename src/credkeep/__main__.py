"""
Entry point for running credkeep as a module.

Usage:
    python -m credkeep [command] [options]
"""

from credkeep.cli import main

if __name__ == "__main__":
    main()
