"""
MCP Server Forgejo Models Module

This module contains Pydantic models for client notifications and the
validation entry point used before any tool handler runs.
"""

from .notifications import CancelledNotification, CancelledParams, InitializedNotification, parse_client_notification
from .validation import describe_errors, validate_params

__all__ = [
    "CancelledNotification",
    "CancelledParams",
    "InitializedNotification",
    "describe_errors",
    "parse_client_notification",
    "validate_params",
]
