"""Pydantic models for Forgejo tool parameters"""

import os
import re
from typing import Dict, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

REPOSITORY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")

IssueState = Literal["open", "closed", "all"]


def _absolute_directory(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not value:
        raise ValueError("directory cannot be empty")
    if not os.path.isabs(value):
        raise ValueError("directory must be an absolute path")
    return value


def _non_blank(value: str) -> str:
    if not value.strip():
        raise ValueError("cannot be empty")
    return value


class RepositorySelector(BaseModel):
    """Either an explicit ``owner/repo`` or a working directory to detect it from.

    When both are given, ``directory`` wins.
    """

    repository: Optional[str] = Field(
        default=None, description="Repository in 'owner/repo' format"
    )
    directory: Optional[str] = Field(
        default=None,
        description="Absolute path of a local clone; the repository is detected from its remote",
    )

    @field_validator("repository")
    @classmethod
    def _check_repository(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        if not REPOSITORY_PATTERN.match(value):
            raise ValueError("repository must be in format 'owner/repo'")
        return value

    @field_validator("directory")
    @classmethod
    def _check_directory(cls, value: Optional[str]) -> Optional[str]:
        return _absolute_directory(value)

    @model_validator(mode="after")
    def _require_selector(self):
        if self.repository is None and self.directory is None:
            raise ValueError("either repository ('owner/repo') or directory must be provided")
        return self


class Pagination(BaseModel):
    limit: int = Field(default=15, ge=1, le=100, description="Maximum number of records (1-100)")
    offset: int = Field(default=0, ge=0, description="Number of records to skip")


class ListIssues(RepositorySelector, Pagination):
    state: IssueState = "open"


class ListPullRequests(RepositorySelector, Pagination):
    state: IssueState = "open"


class ListIssueComments(RepositorySelector, Pagination):
    issue_number: int = Field(ge=1)


class CreateIssueComment(RepositorySelector):
    issue_number: int = Field(ge=1)
    comment: str = Field(min_length=1, description="Comment body (markdown)")

    _check_comment = field_validator("comment")(_non_blank)


class EditIssueComment(RepositorySelector):
    issue_number: int = Field(ge=1)
    comment_id: int = Field(ge=1)
    new_content: str = Field(min_length=1, description="Replacement comment body")

    _check_content = field_validator("new_content")(_non_blank)


class ListPullRequestComments(RepositorySelector, Pagination):
    pull_request_number: int = Field(ge=1)


class CreatePullRequestComment(RepositorySelector):
    pull_request_number: int = Field(ge=1)
    comment: str = Field(min_length=1, description="Comment body (markdown)")

    _check_comment = field_validator("comment")(_non_blank)


class EditPullRequestComment(RepositorySelector):
    pull_request_number: int = Field(ge=1)
    comment_id: int = Field(ge=1)
    new_content: str = Field(min_length=1, description="Replacement comment body")

    _check_content = field_validator("new_content")(_non_blank)


class CreateIssue(RepositorySelector):
    title: str = Field(min_length=1, max_length=255)
    body: str = Field(default="", max_length=65535, description="Issue description (markdown)")

    _check_title = field_validator("title")(_non_blank)


class CreatePullRequest(RepositorySelector):
    """Open a pull request from ``head`` into ``base``.

    ``head`` defaults to the branch checked out in ``directory``.
    """

    title: str = Field(min_length=1, max_length=255)
    body: str = Field(default="", max_length=65535, description="Pull request description (markdown)")
    head: Optional[str] = Field(
        default=None, min_length=1, max_length=255, description="Source branch; detected from directory if omitted"
    )
    base: str = Field(default="main", min_length=1, max_length=255, description="Target branch")
    draft: bool = Field(default=False, description="Mark the pull request as work in progress")
    assignee: Optional[str] = Field(default=None, min_length=1, max_length=255)

    _check_title = field_validator("title")(_non_blank)

    @model_validator(mode="after")
    def _require_head(self):
        if self.head is None and self.directory is None:
            raise ValueError("head is required when no directory is given")
        return self


class EditableFields(BaseModel):
    """Fields shared by the issue and pull request edit tools; omitted ones stay unchanged."""

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    body: Optional[str] = Field(default=None, max_length=65535)
    state: Optional[Literal["open", "closed"]] = None

    @model_validator(mode="after")
    def _require_change(self):
        if not self.changes():
            raise ValueError("at least one field to change must be provided")
        return self

    def changes(self) -> Dict[str, str]:
        """Fields to send in the edit request, named as the API expects."""
        return self.model_dump(include={"title", "body", "state"}, exclude_none=True)


class EditIssue(RepositorySelector, EditableFields):
    issue_number: int = Field(ge=1)


class EditPullRequest(RepositorySelector, EditableFields):
    pull_request_number: int = Field(ge=1)
    base_branch: Optional[str] = Field(default=None, min_length=1, max_length=255)

    def changes(self) -> Dict[str, str]:
        data = super().changes()
        if self.base_branch is not None:
            data["base"] = self.base_branch
        return data


class GetPullRequest(RepositorySelector):
    pull_request_number: int = Field(ge=1)


class ListNotifications(RepositorySelector, Pagination):
    status: Literal["read", "unread", "all"] = "unread"


class ContextDetect(BaseModel):
    directory: Optional[str] = Field(
        default=None,
        description="Absolute path to inspect; defaults to the server's repository or working directory",
    )

    @field_validator("directory")
    @classmethod
    def _check_directory(cls, value: Optional[str]) -> Optional[str]:
        return _absolute_directory(value)


class HealthCheck(BaseModel):
    pass
