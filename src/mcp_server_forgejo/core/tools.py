"""Tool registry for MCP Forgejo Server"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

from mcp.types import Tool
from pydantic import BaseModel

from ..error_handling import DuplicateToolError, RegistryFrozenError, ToolNotFoundError

logger = logging.getLogger(__name__)


class ForgejoTools(str, Enum):
    """Enumeration of all available tools"""

    LIST_ISSUES = "list_issues"
    LIST_PULL_REQUESTS = "list_pull_requests"
    LIST_ISSUE_COMMENTS = "list_issue_comments"
    CREATE_ISSUE_COMMENT = "create_issue_comment"
    EDIT_ISSUE_COMMENT = "edit_issue_comment"
    LIST_PULL_REQUEST_COMMENTS = "list_pull_request_comments"
    CREATE_PULL_REQUEST_COMMENT = "create_pull_request_comment"
    EDIT_PULL_REQUEST_COMMENT = "edit_pull_request_comment"
    CREATE_ISSUE = "create_issue"
    EDIT_ISSUE = "edit_issue"
    CREATE_PULL_REQUEST = "create_pull_request"
    EDIT_PULL_REQUEST = "edit_pull_request"
    GET_PULL_REQUEST = "get_pull_request"
    LIST_NOTIFICATIONS = "list_notifications"

    CONTEXT_DETECT = "context_detect"
    HEALTH_CHECK = "health_check"


# handler(validated_params, execution_context) -> JSON-serializable result
ToolHandler = Callable[[Any, Any], Awaitable[Dict[str, Any]]]


@dataclass(frozen=True)
class ToolDefinition:
    """Complete tool definition with metadata"""

    name: str
    description: str
    schema: Type[BaseModel]
    handler: ToolHandler
    requires_auth: bool = False
    timeout: Optional[float] = None


class ToolRegistry:
    """Name-to-descriptor mapping, built once at startup.

    After :meth:`freeze` the registry is read-only, so lookups from concurrent
    requests need no synchronization.
    """

    def __init__(self):
        self._tools: Dict[str, ToolDefinition] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, tool_def: ToolDefinition) -> None:
        """Register a tool in the registry"""
        if self._frozen:
            raise RegistryFrozenError(f"Cannot register {tool_def.name!r}: registry is frozen")
        if tool_def.name in self._tools:
            raise DuplicateToolError(f"Tool already registered: {tool_def.name}")
        self._tools[tool_def.name] = tool_def
        logger.debug(f"Registered tool: {tool_def.name} (auth={tool_def.requires_auth})")

    def freeze(self) -> "ToolRegistry":
        self._frozen = True
        return self

    def lookup(self, name: str) -> ToolDefinition:
        """Get tool definition by name.

        Raises:
            ToolNotFoundError: no tool with that name.
        """
        try:
            return self._tools[name]
        except KeyError:
            raise ToolNotFoundError(name) from None

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def list(self) -> List[ToolDefinition]:
        """All tool definitions in registration order"""
        return list(self._tools.values())

    def manifest(self) -> List[Tool]:
        """Get all tools as MCP Tool objects"""
        return [
            Tool(
                name=tool_def.name,
                description=tool_def.description,
                inputSchema=tool_def.schema.model_json_schema(),
            )
            for tool_def in self._tools.values()
        ]
