"""Repository context detection"""

from .context import ContextResolver, normalize_directory
from .detection import (
    KNOWN_FORGEJO_HOSTS,
    REJECTED_HOSTS,
    current_branch,
    detect_repository,
    is_recognized_host,
    parse_remote_url,
    sanitize_remote_url,
)
from .models import RemoteURL, RepositoryContext

__all__ = [
    "ContextResolver",
    "KNOWN_FORGEJO_HOSTS",
    "REJECTED_HOSTS",
    "RemoteURL",
    "RepositoryContext",
    "current_branch",
    "detect_repository",
    "is_recognized_host",
    "normalize_directory",
    "parse_remote_url",
    "sanitize_remote_url",
]
