"""
CLI runner module.

Provides commands:
- sync: Sync Up transactions into YNAB
- status: Sync state health and last run
- review: Failed transactions and balance checks
- rules: Manage merchant rules
- accounts: List accounts for mapping setup
- init-config: Write a default config file
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
