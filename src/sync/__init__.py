"""
Drive sync engine: session management and push/pull/reconcile orchestration.
"""

from .engine import SKEW_TOLERANCE, SyncEngine, build_engine
from .session import SessionManager

__all__ = ["SKEW_TOLERANCE", "SessionManager", "SyncEngine", "build_engine"]
