"""Zap realtime messaging core."""
