"""
Common utilities for subscription-drive-sync.

Modules:
- config: environment-driven Settings
- errors: error taxonomy shared by the transport, session and engine layers
"""

__all__ = [
    "config",
    "errors",
]
