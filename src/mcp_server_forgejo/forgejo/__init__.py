"""Forgejo integration for MCP Forgejo Server"""

from .auth import AuthDecision, AuthValidator, validate_token_format
from .client import ForgejoClient, classify_response
from .models import (
    ContextDetect,
    CreateIssue,
    CreateIssueComment,
    CreatePullRequest,
    CreatePullRequestComment,
    EditIssue,
    EditIssueComment,
    EditPullRequest,
    EditPullRequestComment,
    GetPullRequest,
    HealthCheck,
    ListIssueComments,
    ListIssues,
    ListNotifications,
    ListPullRequestComments,
    ListPullRequests,
    RepositorySelector,
)

__all__ = [
    "AuthDecision",
    "AuthValidator",
    "ForgejoClient",
    "classify_response",
    "validate_token_format",
    # Models
    "ContextDetect",
    "CreateIssue",
    "CreateIssueComment",
    "CreatePullRequest",
    "CreatePullRequestComment",
    "EditIssue",
    "EditIssueComment",
    "EditPullRequest",
    "EditPullRequestComment",
    "GetPullRequest",
    "HealthCheck",
    "ListIssueComments",
    "ListIssues",
    "ListNotifications",
    "ListPullRequestComments",
    "ListPullRequests",
    "RepositorySelector",
]
