"""Forgejo API operations for MCP Forgejo Server.

Thin list/create/edit calls; each returns plain domain records built from the
API response.
"""

import logging
import re
from typing import Any, Dict, List, Optional

from .client import ForgejoClient

logger = logging.getLogger(__name__)

# subject URLs end in the issue or pull request number
_SUBJECT_NUMBER = re.compile(r"/(\d+)/?$")


def _login(user: Optional[Dict[str, Any]]) -> str:
    return (user or {}).get("login", "")


def issue_record(data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": data.get("id"),
        "number": data.get("number"),
        "title": data.get("title", ""),
        "state": data.get("state", ""),
        "body": data.get("body") or "",
        "user": _login(data.get("user")),
        "created": data.get("created_at"),
        "updated": data.get("updated_at"),
    }


def _branch(data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    data = data or {}
    return {"ref": data.get("ref", ""), "sha": data.get("sha", "")}


def pull_request_record(data: Dict[str, Any]) -> Dict[str, Any]:
    record = issue_record(data)
    record["head"] = _branch(data.get("head"))
    record["base"] = _branch(data.get("base"))
    return record


def comment_record(data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": data.get("id"),
        "body": data.get("body") or "",
        "user": _login(data.get("user")),
        "created": data.get("created_at"),
        "updated": data.get("updated_at"),
    }


def pull_request_details(data: Dict[str, Any]) -> Dict[str, Any]:
    """Full pull request record, as returned by the single-PR endpoint."""
    record = pull_request_record(data)
    milestone = data.get("milestone") or {}
    record.update(
        {
            "html_url": data.get("html_url", ""),
            "diff_url": data.get("diff_url", ""),
            "patch_url": data.get("patch_url", ""),
            "labels": [label.get("name", "") for label in data.get("labels") or []],
            "milestone": milestone.get("title"),
            "assignees": [_login(user) for user in data.get("assignees") or []],
            "comments": data.get("comments", 0),
            "is_locked": bool(data.get("is_locked")),
            "mergeable": bool(data.get("mergeable")),
            "merged": bool(data.get("merged")),
            "merged_at": data.get("merged_at"),
        }
    )
    return record


def notification_record(data: Dict[str, Any]) -> Dict[str, Any]:
    subject = data.get("subject") or {}
    match = _SUBJECT_NUMBER.search(subject.get("url") or "")
    return {
        "id": data.get("id"),
        "unread": bool(data.get("unread")),
        "updated": data.get("updated_at"),
        "repository": (data.get("repository") or {}).get("full_name", ""),
        "title": subject.get("title", ""),
        "type": (subject.get("type") or "").lower(),
        "number": int(match.group(1)) if match else None,
    }


async def _paginate(
    client: ForgejoClient,
    endpoint: str,
    token: str,
    limit: int,
    offset: int,
    params: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, Any]]:
    """Fetch ``limit`` records starting at ``offset`` from a page-based endpoint.

    The API pages by ``page``/``limit``; an offset that is not a multiple of
    ``limit`` spans two pages.
    """
    page = offset // limit + 1
    skip = offset % limit
    query = dict(params or {})

    query.update({"page": page, "limit": limit})
    items = list(await client.get(endpoint, token, params=query) or [])
    if skip and len(items) == limit:
        query["page"] = page + 1
        items.extend(await client.get(endpoint, token, params=query) or [])
    return items[skip : skip + limit]


async def list_issues(
    client: ForgejoClient, token: str, owner: str, repo: str, *, state: str = "open", limit: int = 15, offset: int = 0
) -> List[Dict[str, Any]]:
    """List issues (pull requests excluded)"""
    items = await _paginate(
        client, f"/repos/{owner}/{repo}/issues", token, limit, offset, {"state": state, "type": "issues"}
    )
    return [issue_record(item) for item in items]


async def list_pull_requests(
    client: ForgejoClient, token: str, owner: str, repo: str, *, state: str = "open", limit: int = 15, offset: int = 0
) -> List[Dict[str, Any]]:
    items = await _paginate(client, f"/repos/{owner}/{repo}/pulls", token, limit, offset, {"state": state})
    return [pull_request_record(item) for item in items]


async def list_issue_comments(
    client: ForgejoClient, token: str, owner: str, repo: str, number: int, *, limit: int = 15, offset: int = 0
) -> List[Dict[str, Any]]:
    """List comments on an issue or pull request (they share numbering)"""
    items = await _paginate(client, f"/repos/{owner}/{repo}/issues/{number}/comments", token, limit, offset)
    return [comment_record(item) for item in items]


async def create_issue_comment(
    client: ForgejoClient, token: str, owner: str, repo: str, number: int, body: str
) -> Dict[str, Any]:
    data = await client.post(f"/repos/{owner}/{repo}/issues/{number}/comments", token, json={"body": body})
    logger.info(f"Created comment on {owner}/{repo}#{number}")
    return comment_record(data or {})


async def edit_issue_comment(
    client: ForgejoClient, token: str, owner: str, repo: str, comment_id: int, body: str
) -> Dict[str, Any]:
    data = await client.patch(f"/repos/{owner}/{repo}/issues/comments/{comment_id}", token, json={"body": body})
    logger.info(f"Edited comment {comment_id} in {owner}/{repo}")
    return comment_record(data or {})


async def edit_pull_request_comment(
    client: ForgejoClient, token: str, owner: str, repo: str, comment_id: int, body: str
) -> Dict[str, Any]:
    """Pull request comments are issue comments; only the caller's framing differs"""
    return await edit_issue_comment(client, token, owner, repo, comment_id, body)


async def create_issue(
    client: ForgejoClient, token: str, owner: str, repo: str, title: str, body: str = ""
) -> Dict[str, Any]:
    data = await client.post(f"/repos/{owner}/{repo}/issues", token, json={"title": title, "body": body})
    record = issue_record(data or {})
    logger.info(f"Created issue {owner}/{repo}#{record['number']}")
    return record


async def edit_issue(
    client: ForgejoClient, token: str, owner: str, repo: str, number: int, changes: Dict[str, Any]
) -> Dict[str, Any]:
    data = await client.patch(f"/repos/{owner}/{repo}/issues/{number}", token, json=changes)
    logger.info(f"Edited issue {owner}/{repo}#{number}: {', '.join(sorted(changes))}")
    return issue_record(data or {})


async def create_pull_request(
    client: ForgejoClient,
    token: str,
    owner: str,
    repo: str,
    *,
    title: str,
    head: str,
    base: str,
    body: str = "",
    assignee: Optional[str] = None,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"title": title, "head": head, "base": base, "body": body}
    if assignee:
        payload["assignee"] = assignee
    data = await client.post(f"/repos/{owner}/{repo}/pulls", token, json=payload)
    record = pull_request_record(data or {})
    logger.info(f"Opened pull request {owner}/{repo}#{record['number']} ({head} -> {base})")
    return record


async def edit_pull_request(
    client: ForgejoClient, token: str, owner: str, repo: str, number: int, changes: Dict[str, Any]
) -> Dict[str, Any]:
    data = await client.patch(f"/repos/{owner}/{repo}/pulls/{number}", token, json=changes)
    logger.info(f"Edited pull request {owner}/{repo}#{number}: {', '.join(sorted(changes))}")
    return pull_request_record(data or {})


async def get_pull_request(client: ForgejoClient, token: str, owner: str, repo: str, number: int) -> Dict[str, Any]:
    data = await client.get(f"/repos/{owner}/{repo}/pulls/{number}", token)
    return pull_request_details(data or {})


def _notification_filter(status: str) -> Dict[str, str]:
    if status == "all":
        return {"all": "true"}
    if status == "read":
        return {"all": "true", "status-types": "read"}
    return {"status-types": "unread"}


async def list_notifications(
    client: ForgejoClient,
    token: str,
    owner: str,
    repo: str,
    *,
    status: str = "unread",
    limit: int = 15,
    offset: int = 0,
) -> List[Dict[str, Any]]:
    """List the caller's notification threads for one repository"""
    items = await _paginate(
        client, f"/repos/{owner}/{repo}/notifications", token, limit, offset, _notification_filter(status)
    )
    return [notification_record(item) for item in items]
