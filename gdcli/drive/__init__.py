"""
gdcli.drive package.

Authenticated access to the Google Drive REST API.
Part of gdcli - Google Drive command-line client.
"""
