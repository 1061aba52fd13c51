"""Tool handlers for MCP Forgejo Server.

Every handler has the same shape: ``handler(params, ctx) -> dict``, where
``params`` is the validated pydantic model and ``ctx`` the request's
:class:`ExecutionContext`. External calls go through ``ctx.guard`` so they
observe cancellation and the request deadline.
"""

import asyncio
import logging
import os
from typing import Any, Dict, Optional, Tuple

from ..forgejo import api
from ..forgejo.models import (
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
from ..git import current_branch
from .execution import ExecutionContext
from .tools import ForgejoTools, ToolDefinition, ToolRegistry

logger = logging.getLogger(__name__)

# Forgejo treats this title prefix as a draft (work in progress) marker
DRAFT_PREFIX = "WIP: "


async def resolve_repository(params: RepositorySelector, ctx: ExecutionContext) -> Tuple[str, str]:
    """Owner and name from the selector; ``directory`` takes precedence."""
    if params.directory is not None:
        repo = await ctx.repository(params.directory)
        return repo.owner, repo.name
    owner, name = params.repository.split("/", 1)
    return owner, name


def _pagination(params) -> Dict[str, int]:
    return {"limit": params.limit, "offset": params.offset}


async def handle_list_issues(params: ListIssues, ctx: ExecutionContext) -> Dict[str, Any]:
    token = await ctx.authenticate()
    owner, repo = await resolve_repository(params, ctx)
    issues = await ctx.guard(
        api.list_issues(
            ctx.services.client, token, owner, repo, state=params.state, limit=params.limit, offset=params.offset
        )
    )
    return {"issues": issues, "pagination": _pagination(params)}


async def handle_list_pull_requests(params: ListPullRequests, ctx: ExecutionContext) -> Dict[str, Any]:
    token = await ctx.authenticate()
    owner, repo = await resolve_repository(params, ctx)
    pull_requests = await ctx.guard(
        api.list_pull_requests(
            ctx.services.client, token, owner, repo, state=params.state, limit=params.limit, offset=params.offset
        )
    )
    return {"pull_requests": pull_requests, "pagination": _pagination(params)}


async def handle_list_issue_comments(params: ListIssueComments, ctx: ExecutionContext) -> Dict[str, Any]:
    token = await ctx.authenticate()
    owner, repo = await resolve_repository(params, ctx)
    comments = await ctx.guard(
        api.list_issue_comments(
            ctx.services.client, token, owner, repo, params.issue_number, limit=params.limit, offset=params.offset
        )
    )
    return {"comments": comments, "pagination": _pagination(params)}


async def handle_create_issue_comment(params: CreateIssueComment, ctx: ExecutionContext) -> Dict[str, Any]:
    token = await ctx.authenticate()
    owner, repo = await resolve_repository(params, ctx)
    comment = await ctx.guard(
        api.create_issue_comment(ctx.services.client, token, owner, repo, params.issue_number, params.comment)
    )
    return {"comment": comment}


async def handle_edit_issue_comment(params: EditIssueComment, ctx: ExecutionContext) -> Dict[str, Any]:
    token = await ctx.authenticate()
    owner, repo = await resolve_repository(params, ctx)
    comment = await ctx.guard(
        api.edit_issue_comment(ctx.services.client, token, owner, repo, params.comment_id, params.new_content)
    )
    return {"comment": comment}


async def handle_list_pull_request_comments(params: ListPullRequestComments, ctx: ExecutionContext) -> Dict[str, Any]:
    token = await ctx.authenticate()
    owner, repo = await resolve_repository(params, ctx)
    # pull requests share the issue comment endpoint
    comments = await ctx.guard(
        api.list_issue_comments(
            ctx.services.client,
            token,
            owner,
            repo,
            params.pull_request_number,
            limit=params.limit,
            offset=params.offset,
        )
    )
    return {"comments": comments, "pagination": _pagination(params)}


async def handle_create_pull_request_comment(
    params: CreatePullRequestComment, ctx: ExecutionContext
) -> Dict[str, Any]:
    token = await ctx.authenticate()
    owner, repo = await resolve_repository(params, ctx)
    comment = await ctx.guard(
        api.create_issue_comment(ctx.services.client, token, owner, repo, params.pull_request_number, params.comment)
    )
    return {"comment": comment}


async def handle_edit_pull_request_comment(params: EditPullRequestComment, ctx: ExecutionContext) -> Dict[str, Any]:
    token = await ctx.authenticate()
    owner, repo = await resolve_repository(params, ctx)
    comment = await ctx.guard(
        api.edit_pull_request_comment(ctx.services.client, token, owner, repo, params.comment_id, params.new_content)
    )
    return {"comment": comment}


async def handle_create_issue(params: CreateIssue, ctx: ExecutionContext) -> Dict[str, Any]:
    token = await ctx.authenticate()
    owner, repo = await resolve_repository(params, ctx)
    issue = await ctx.guard(api.create_issue(ctx.services.client, token, owner, repo, params.title, params.body))
    return {"issue": issue}


async def handle_edit_issue(params: EditIssue, ctx: ExecutionContext) -> Dict[str, Any]:
    token = await ctx.authenticate()
    owner, repo = await resolve_repository(params, ctx)
    issue = await ctx.guard(
        api.edit_issue(ctx.services.client, token, owner, repo, params.issue_number, params.changes())
    )
    return {"issue": issue}


async def handle_create_pull_request(params: CreatePullRequest, ctx: ExecutionContext) -> Dict[str, Any]:
    token = await ctx.authenticate()
    owner, repo = await resolve_repository(params, ctx)
    head = params.head
    if head is None:
        head = await ctx.guard(asyncio.to_thread(current_branch, params.directory))
    title = params.title
    if params.draft and not title.startswith(DRAFT_PREFIX):
        title = DRAFT_PREFIX + title
    pull_request = await ctx.guard(
        api.create_pull_request(
            ctx.services.client,
            token,
            owner,
            repo,
            title=title,
            head=head,
            base=params.base,
            body=params.body,
            assignee=params.assignee,
        )
    )
    return {"pull_request": pull_request}


async def handle_edit_pull_request(params: EditPullRequest, ctx: ExecutionContext) -> Dict[str, Any]:
    token = await ctx.authenticate()
    owner, repo = await resolve_repository(params, ctx)
    pull_request = await ctx.guard(
        api.edit_pull_request(ctx.services.client, token, owner, repo, params.pull_request_number, params.changes())
    )
    return {"pull_request": pull_request}


async def handle_get_pull_request(params: GetPullRequest, ctx: ExecutionContext) -> Dict[str, Any]:
    token = await ctx.authenticate()
    owner, repo = await resolve_repository(params, ctx)
    pull_request = await ctx.guard(
        api.get_pull_request(ctx.services.client, token, owner, repo, params.pull_request_number)
    )
    return {"pull_request": pull_request}


async def handle_list_notifications(params: ListNotifications, ctx: ExecutionContext) -> Dict[str, Any]:
    token = await ctx.authenticate()
    owner, repo = await resolve_repository(params, ctx)
    notifications = await ctx.guard(
        api.list_notifications(
            ctx.services.client, token, owner, repo, status=params.status, limit=params.limit, offset=params.offset
        )
    )
    return {"notifications": notifications, "status": params.status, "pagination": _pagination(params)}


async def handle_context_detect(params: ContextDetect, ctx: ExecutionContext) -> Dict[str, Any]:
    directory: Optional[str] = params.directory
    if directory is None:
        configured = ctx.services.config.repository
        directory = str(configured) if configured is not None else os.getcwd()
    repo = await ctx.repository(directory)
    result = repo.as_dict()
    result.pop("resolved_at", None)
    return result


async def handle_health_check(params: HealthCheck, ctx: ExecutionContext) -> Dict[str, Any]:
    services = ctx.services
    health = await services.metrics.get_health_status()
    return {
        "status": "ok",
        "uptime_sec": health["uptime_sec"],
        "credential": services.credential_fingerprint(),
        "metrics": await services.metrics.get_metrics(),
        "caches": {
            "repository_context": services.context_resolver.cache.snapshot(),
            "auth_decision": services.auth_validator.cache.snapshot(),
        },
    }


def default_tools():
    """Definitions of every tool this server exposes, in manifest order."""
    return [
        ToolDefinition(
            name=ForgejoTools.LIST_ISSUES.value,
            description="List issues of a repository, given as owner/repo or detected from a local directory",
            schema=ListIssues,
            handler=handle_list_issues,
            requires_auth=True,
        ),
        ToolDefinition(
            name=ForgejoTools.LIST_PULL_REQUESTS.value,
            description="List pull requests of a repository",
            schema=ListPullRequests,
            handler=handle_list_pull_requests,
            requires_auth=True,
        ),
        ToolDefinition(
            name=ForgejoTools.LIST_ISSUE_COMMENTS.value,
            description="List comments on an issue",
            schema=ListIssueComments,
            handler=handle_list_issue_comments,
            requires_auth=True,
        ),
        ToolDefinition(
            name=ForgejoTools.CREATE_ISSUE_COMMENT.value,
            description="Add a comment to an issue",
            schema=CreateIssueComment,
            handler=handle_create_issue_comment,
            requires_auth=True,
        ),
        ToolDefinition(
            name=ForgejoTools.EDIT_ISSUE_COMMENT.value,
            description="Replace the body of an existing issue comment",
            schema=EditIssueComment,
            handler=handle_edit_issue_comment,
            requires_auth=True,
        ),
        ToolDefinition(
            name=ForgejoTools.LIST_PULL_REQUEST_COMMENTS.value,
            description="List comments on a pull request",
            schema=ListPullRequestComments,
            handler=handle_list_pull_request_comments,
            requires_auth=True,
        ),
        ToolDefinition(
            name=ForgejoTools.CREATE_PULL_REQUEST_COMMENT.value,
            description="Add a comment to a pull request",
            schema=CreatePullRequestComment,
            handler=handle_create_pull_request_comment,
            requires_auth=True,
        ),
        ToolDefinition(
            name=ForgejoTools.EDIT_PULL_REQUEST_COMMENT.value,
            description="Replace the body of an existing pull request comment",
            schema=EditPullRequestComment,
            handler=handle_edit_pull_request_comment,
            requires_auth=True,
        ),
        ToolDefinition(
            name=ForgejoTools.CREATE_ISSUE.value,
            description="Open a new issue",
            schema=CreateIssue,
            handler=handle_create_issue,
            requires_auth=True,
        ),
        ToolDefinition(
            name=ForgejoTools.EDIT_ISSUE.value,
            description="Change the title, description or state of an issue",
            schema=EditIssue,
            handler=handle_edit_issue,
            requires_auth=True,
        ),
        ToolDefinition(
            name=ForgejoTools.CREATE_PULL_REQUEST.value,
            description="Open a pull request; the source branch defaults to the one checked out in directory",
            schema=CreatePullRequest,
            handler=handle_create_pull_request,
            requires_auth=True,
        ),
        ToolDefinition(
            name=ForgejoTools.EDIT_PULL_REQUEST.value,
            description="Change the title, description, state or base branch of a pull request",
            schema=EditPullRequest,
            handler=handle_edit_pull_request,
            requires_auth=True,
        ),
        ToolDefinition(
            name=ForgejoTools.GET_PULL_REQUEST.value,
            description="Fetch one pull request with its labels, assignees and merge state",
            schema=GetPullRequest,
            handler=handle_get_pull_request,
            requires_auth=True,
        ),
        ToolDefinition(
            name=ForgejoTools.LIST_NOTIFICATIONS.value,
            description="List your notification threads for a repository",
            schema=ListNotifications,
            handler=handle_list_notifications,
            requires_auth=True,
        ),
        ToolDefinition(
            name=ForgejoTools.CONTEXT_DETECT.value,
            description="Detect the Forgejo repository a local directory belongs to",
            schema=ContextDetect,
            handler=handle_context_detect,
        ),
        ToolDefinition(
            name=ForgejoTools.HEALTH_CHECK.value,
            description="Report server uptime, request metrics and cache state",
            schema=HealthCheck,
            handler=handle_health_check,
        ),
    ]


def build_registry() -> ToolRegistry:
    """Register every default tool and freeze the registry."""
    registry = ToolRegistry()
    for tool_def in default_tools():
        registry.register(tool_def)
    logger.debug(f"Tool registry built with {len(registry)} tools")
    return registry.freeze()
