"""
ext-updater: keeps per-user desktop shell extensions up to date.
"""

__version__ = "0.4.0"
