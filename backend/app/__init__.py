"""Zap realtime backend application."""
