"""
gdcli.auth package.

OAuth2 authorization flow, durable credential/account stores and access
token refresh for gdcli accounts.
Part of gdcli - Google Drive command-line client.
"""

from gdcli.auth.manager import AccountManager
from gdcli.auth.token_manager import TokenAccessor

__all__ = ["AccountManager", "TokenAccessor"]
