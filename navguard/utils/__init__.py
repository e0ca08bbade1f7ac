"""Utility helpers for NavGuard."""
