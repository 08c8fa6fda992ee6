"""
gdcli — Google Drive command-line client.

Manages per-user OAuth2 accounts and supplies valid access tokens for
Drive API calls.
"""

__version__ = "0.1.0"
