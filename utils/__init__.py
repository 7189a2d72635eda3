"""Shared utilities for Pace Bot: logging, telemetry and privacy helpers."""
