"""Periodic jobs for the FixIT API"""

from .auto_close import run_auto_close

__all__ = ["run_auto_close"]
