"""
SproutVault - backup, restore and compatibility gate for a household tracker store.

SproutVault packages the tracker's SQLite store and .env configuration into
portable bundles, restores them safely into a running deployment, and forces
an admin credential reset when a restored store predates the credential
baseline.

Key Features:
    - ZIP bundles holding the store and an optional .env snapshot
    - Legacy raw store uploads
    - Dated backups of the live files before every restore
    - Hot reload of restored configuration without a restart
    - Pre-migration checks that never touch the live store
    - HTTP boundary, API client and command line
"""

__version__ = "0.1.0"
__author__ = ""
__email__ = ""

from sproutvault.config.settings import Settings, load_config

__all__ = [
    "__version__",
    "Settings",
    "load_config",
]
