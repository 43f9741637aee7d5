"""
Google Drive access for the sync engine.

Modules:
- client: Drive v3 HTTP transport (list, media download, multipart upload)
- oauth: installed-app OAuth flow and token revocation
- codec: multipart/related encoding of metadata + JSON payload
- locator: finds the single data file in the app-data folder
"""

__all__ = [
    "client",
    "codec",
    "locator",
    "oauth",
]
