import pytest

from mcp_server_forgejo.error_handling import ToolValidationError
from mcp_server_forgejo.forgejo.models import (
    ContextDetect,
    CreateIssueComment,
    CreatePullRequest,
    EditIssueComment,
    EditPullRequest,
    HealthCheck,
    ListIssues,
    ListNotifications,
)
from mcp_server_forgejo.models import validate_params


def _fields(error: ToolValidationError):
    return {entry["field"] for entry in error.errors}


def test_repository_selector_accepts_owner_repo():
    params = validate_params(ListIssues, {"repository": "acme/widgets", "limit": 15, "offset": 0})
    assert params.repository == "acme/widgets"
    assert params.directory is None
    assert (params.limit, params.offset, params.state) == (15, 0, "open")


def test_bad_repository_format_names_the_constraint():
    with pytest.raises(ToolValidationError) as exc_info:
        validate_params(ListIssues, {"repository": "bad-format"})

    error = exc_info.value
    assert error.kind == "ValidationError"
    assert "owner/repo" in error.message
    assert _fields(error) == {"repository"}


def test_selector_requires_repository_or_directory():
    with pytest.raises(ToolValidationError, match="repository.*or directory"):
        validate_params(ListIssues, {})


def test_directory_must_be_absolute():
    with pytest.raises(ToolValidationError) as exc_info:
        validate_params(ListIssues, {"directory": "relative/path"})
    assert "absolute" in exc_info.value.message
    assert _fields(exc_info.value) == {"directory"}


def test_directory_and_repository_may_both_be_given():
    params = validate_params(ListIssues, {"repository": "acme/widgets", "directory": "/work/widgets"})
    assert params.directory == "/work/widgets"


@pytest.mark.parametrize(
    "limit, offset, field",
    [(0, 0, "limit"), (101, 0, "limit"), (10, -1, "offset")],
)
def test_pagination_bounds(limit, offset, field):
    with pytest.raises(ToolValidationError) as exc_info:
        validate_params(ListIssues, {"repository": "acme/widgets", "limit": limit, "offset": offset})
    assert _fields(exc_info.value) == {field}


def test_each_failed_constraint_is_reported():
    with pytest.raises(ToolValidationError) as exc_info:
        validate_params(ListIssues, {"repository": "acme/widgets", "limit": 500, "state": "merged"})
    assert _fields(exc_info.value) == {"limit", "state"}


def test_blank_comment_is_rejected():
    with pytest.raises(ToolValidationError) as exc_info:
        validate_params(CreateIssueComment, {"repository": "acme/widgets", "issue_number": 3, "comment": "   "})
    assert _fields(exc_info.value) == {"comment"}


def test_edit_comment_requires_positive_ids():
    with pytest.raises(ToolValidationError) as exc_info:
        validate_params(
            EditIssueComment,
            {"repository": "acme/widgets", "issue_number": 0, "comment_id": 0, "new_content": "x"},
        )
    assert _fields(exc_info.value) == {"issue_number", "comment_id"}


def test_missing_params_are_treated_as_empty_object():
    assert validate_params(HealthCheck, None) == HealthCheck()
    assert validate_params(ContextDetect, None).directory is None


def test_non_object_params_are_rejected():
    with pytest.raises(ToolValidationError, match="must be an object"):
        validate_params(HealthCheck, ["not", "an", "object"])


def test_submitted_values_are_not_echoed():
    secret_like = "s3cr3t-value-that-should-not-leak"
    with pytest.raises(ToolValidationError) as exc_info:
        validate_params(ListIssues, {"repository": secret_like})
    assert secret_like not in exc_info.value.message
    assert secret_like not in str(exc_info.value.errors)


def test_pull_request_edit_maps_base_branch_to_base():
    params = validate_params(
        EditPullRequest,
        {"repository": "acme/widgets", "pull_request_number": 4, "title": "Renamed", "base_branch": "develop"},
    )
    assert params.changes() == {"title": "Renamed", "base": "develop"}


def test_pull_request_edit_state_is_open_or_closed():
    with pytest.raises(ToolValidationError) as exc_info:
        validate_params(EditPullRequest, {"repository": "acme/widgets", "pull_request_number": 4, "state": "merged"})
    assert _fields(exc_info.value) == {"state"}


def test_pull_request_defaults():
    params = validate_params(CreatePullRequest, {"directory": "/work/widgets", "title": "Add login"})
    assert (params.head, params.base, params.draft, params.body) == (None, "main", False, "")


def test_notification_status_is_restricted():
    assert validate_params(ListNotifications, {"repository": "acme/widgets"}).status == "unread"
    with pytest.raises(ToolValidationError) as exc_info:
        validate_params(ListNotifications, {"repository": "acme/widgets", "status": "pinned"})
    assert _fields(exc_info.value) == {"status"}
