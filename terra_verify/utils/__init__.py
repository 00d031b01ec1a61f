"""Shared utilities: geodesy and structured logging."""
