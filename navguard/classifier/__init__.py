"""Remote phishing classification client for NavGuard."""

from .client import ClassificationResult, RemoteClassifier

__all__ = ["ClassificationResult", "RemoteClassifier"]
