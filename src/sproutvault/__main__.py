"""
Entry point for running SproutVault as a module.

Usage:
    python -m sproutvault [command] [options]
"""

from sproutvault.cli import main

if __name__ == "__main__":
    main()
