"""MCP Forgejo Server core components"""

from .dispatcher import Dispatcher, RequestEnvelope, parse_envelope
from .execution import AdmissionQueue, ExecutionContext
from .handlers import build_registry, default_tools
from .services import ServerServices
from .tools import ForgejoTools, ToolDefinition, ToolRegistry

__all__ = [
    "AdmissionQueue",
    "Dispatcher",
    "ExecutionContext",
    "ForgejoTools",
    "RequestEnvelope",
    "ServerServices",
    "ToolDefinition",
    "ToolRegistry",
    "build_registry",
    "default_tools",
    "parse_envelope",
]
