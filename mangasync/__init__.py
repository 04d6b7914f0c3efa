"""
mangasync: reconciliation of a local media library with a remote account.
"""

__version__ = "0.1.0"
