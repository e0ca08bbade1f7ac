"""HTTP API for NavGuard."""

from .server import NavGuardServer, ResponseNavigator

__all__ = ["NavGuardServer", "ResponseNavigator"]
