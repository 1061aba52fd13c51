"""Repository detection from a working directory.

This is the blocking source-control primitive behind the context resolver:
``detect_repository(path)`` returns a :class:`RepositoryContext` or raises a
specific :class:`ContextError` subclass. It reads git metadata with GitPython
and never touches the network.
"""

import ipaddress
import logging
import re
import time
from pathlib import Path
from typing import Iterable, List, Tuple
from urllib.parse import urlsplit, urlunsplit

import git

from ..error_handling import (
    DetachedHeadError,
    MalformedURLError,
    NoRemoteError,
    NotARepositoryError,
    UnrecognizedHostError,
)
from .models import RemoteURL, RepositoryContext

logger = logging.getLogger(__name__)

DEFAULT_REMOTE_NAME = "origin"

KNOWN_FORGEJO_HOSTS = ("codeberg.org", "forgejo.org")
REJECTED_HOSTS = ("github.com", "gitlab.com", "bitbucket.org")

URL_SCHEMES = ("http", "https", "ssh", "git", "git+ssh", "ssh+git")

# user@host:owner/repo.git
_SCP_LIKE = re.compile(r"^(?P<user>[^@/\s]+)@(?P<host>[^:/\s]+):(?P<path>[^\s]+)$")
_SEGMENT = re.compile(r"^[A-Za-z0-9_.-]+$")
_HOSTNAME = re.compile(r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?(\.[a-z0-9]([a-z0-9-]*[a-z0-9])?)*$")


def sanitize_remote_url(url: str) -> str:
    """Canonical form of a remote URL with any embedded credential removed.

    HTTP(S) URLs lose their userinfo entirely. SSH URLs keep the login name
    (``git@``) but never a password, so ``https://oauth2:<token>@host/o/r.git``
    becomes ``https://host/o/r.git``.
    """
    url = url.strip()
    if "://" not in url:
        match = _SCP_LIKE.match(url)
        if match:
            user = match.group("user").split(":", 1)[0]
            return f"{user}@{match.group('host')}:{match.group('path')}"
        # unknown format: keep only what follows the last '@'
        return url.rsplit("@", 1)[-1]

    try:
        parts = urlsplit(url)
        host = parts.hostname or ""
        port = parts.port
    except ValueError:
        return "<unparseable URL>"
    if "@" not in parts.netloc:
        return url

    netloc = f"[{host}]" if ":" in host else host
    if port is not None:
        netloc = f"{netloc}:{port}"
    if parts.username and parts.password is None and not parts.scheme.lower().startswith("http"):
        netloc = f"{parts.username}@{netloc}"
    return urlunsplit(parts._replace(netloc=netloc))


def _split_owner_repo(path: str, url: str) -> Tuple[str, str]:
    path = path.strip("/")
    if path.endswith(".git"):
        path = path[: -len(".git")]
    parts = path.split("/")
    if len(parts) != 2 or not all(parts):
        raise MalformedURLError(
            f"Remote URL path must be 'owner/repo', got '{path}'",
            hint=f"Check the remote URL: {url}",
        )
    owner, name = parts
    if not _SEGMENT.match(owner) or not _SEGMENT.match(name):
        raise MalformedURLError(f"Remote URL contains an invalid owner or repository name: {url}")
    return owner, name


def parse_remote_url(url: str) -> RemoteURL:
    """Parse owner and repository name from an SSH or HTTP(S) git URL.

    Supported forms::

        git@host:owner/repo.git
        ssh://git@host:2222/owner/repo.git
        https://host/owner/repo.git
        git://host/owner/repo

    Raises:
        MalformedURLError: the URL is in none of the supported forms.
    """
    url = url.strip()
    if not url:
        raise MalformedURLError("Remote URL is empty")
    # error messages quote the URL without its credentials
    shown = sanitize_remote_url(url)

    if "://" in url:
        try:
            parts = urlsplit(url)
            host = parts.hostname
        except ValueError:
            raise MalformedURLError(f"Cannot parse remote URL: {shown}") from None
        if parts.scheme.lower() not in URL_SCHEMES:
            raise MalformedURLError(f"Unsupported remote URL scheme '{parts.scheme}': {shown}")
        if not host:
            raise MalformedURLError(f"Remote URL has no host: {shown}")
        owner, name = _split_owner_repo(parts.path, shown)
        return RemoteURL(host=host.lower(), owner=owner, name=name)

    match = _SCP_LIKE.match(url)
    if match:
        owner, name = _split_owner_repo(match.group("path"), shown)
        return RemoteURL(host=match.group("host").lower(), owner=owner, name=name)

    raise MalformedURLError(
        f"Unsupported remote URL format: {shown}",
        hint="Expected user@host:owner/repo or https://host/owner/repo",
    )


def _host_matches(host: str, patterns: Iterable[str]) -> bool:
    for pattern in patterns:
        pattern = pattern.lower().strip()
        if not pattern:
            continue
        if pattern.startswith("*."):
            pattern = pattern[2:]
        if host == pattern or host.endswith("." + pattern):
            return True
    return False


def _looks_like_host(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        ipaddress.ip_address(host)
        return True
    except ValueError:
        pass
    return "." in host and bool(_HOSTNAME.match(host))


def is_recognized_host(host: str, allowed_hosts: Iterable[str] = ()) -> bool:
    """Check whether ``host`` can be a Forgejo instance.

    Configured hosts and well-known Forgejo hosts are accepted, well-known
    hosts of other forges are rejected, and any other syntactically valid host
    is accepted as a self-hosted instance.
    """
    host = host.lower()
    if _host_matches(host, allowed_hosts):
        return True
    if _host_matches(host, KNOWN_FORGEJO_HOSTS):
        return True
    if _host_matches(host, REJECTED_HOSTS):
        return False
    return _looks_like_host(host)


def _governing_root(repo: git.Repo) -> Path:
    """Root of the repository that owns ``repo``'s working tree.

    For a linked worktree this is the main working tree, not the worktree.
    """
    git_dir = Path(repo.git_dir).resolve()
    common_dir = Path(repo.common_dir).resolve()
    if git_dir != common_dir and common_dir.name == ".git":
        return common_dir.parent
    return Path(repo.working_tree_dir).resolve()


def _list_remotes(reader) -> List[str]:
    names = []
    for section in reader.sections():
        if section.startswith('remote "') and section.endswith('"'):
            names.append(section[len('remote "') : -1])
    return names


def detect_repository(
    path: str,
    remote_name: str = DEFAULT_REMOTE_NAME,
    allowed_hosts: Iterable[str] = (),
    clock=time.time,
) -> RepositoryContext:
    """Detect the repository identity for a working directory.

    Raises:
        NotARepositoryError: path missing, not a directory, not inside a
            working tree, or a bare repository.
        NoRemoteError: no remotes, or the canonical remote is not configured.
        MalformedURLError: the remote URL cannot be parsed.
        UnrecognizedHostError: the remote host is not a Forgejo instance.
    """
    directory = Path(path)
    if not directory.exists():
        raise NotARepositoryError(f"Directory does not exist: {path}", path=path)
    if not directory.is_dir():
        raise NotARepositoryError(f"Not a directory: {path}", path=path)

    try:
        repo = git.Repo(directory, search_parent_directories=True)
    except (git.InvalidGitRepositoryError, git.NoSuchPathError):
        raise NotARepositoryError(
            f"Not a git repository: {path}",
            path=path,
            hint="Run the tool from inside a clone, or pass 'repository' as owner/repo",
        ) from None

    try:
        if repo.bare or repo.working_tree_dir is None:
            raise NotARepositoryError(f"Repository at {path} is bare; it has no working tree", path=path)

        root = _governing_root(repo)
        reader = repo.config_reader()
        remotes = _list_remotes(reader)
        if not remotes:
            raise NoRemoteError(
                f"Repository at {root} has no remotes configured",
                path=str(root),
                hint=f"Add one with: git remote add {remote_name} <url>",
            )
        section = f'remote "{remote_name}"'
        if remote_name not in remotes or not reader.has_option(section, "url"):
            raise NoRemoteError(
                f"Remote '{remote_name}' is not configured (available: {', '.join(remotes)})",
                path=str(root),
                hint="Set FORGEJO_REMOTE_NAME to the remote pointing at your Forgejo instance",
            )
        remote_url = str(reader.get_value(section, "url")).strip()
    finally:
        repo.close()

    parsed = parse_remote_url(remote_url)
    if not is_recognized_host(parsed.host, allowed_hosts):
        raise UnrecognizedHostError(
            f"Remote host '{parsed.host}' is not a recognized Forgejo instance",
            path=str(root),
            hint="Add the host to FORGEJO_EXTRA_HOSTS if it is a self-hosted instance",
        )

    logger.debug(f"Detected {parsed.full_name} on {parsed.host} for {path}")
    return RepositoryContext(
        owner=parsed.owner,
        name=parsed.name,
        remote_url=sanitize_remote_url(remote_url),
        host=parsed.host,
        remote_name=remote_name,
        root=str(root),
        resolved_at=clock(),
    )


def current_branch(path: str) -> str:
    """Name of the branch checked out in the working tree containing ``path``.

    Raises:
        NotARepositoryError: ``path`` is not inside a working tree.
        DetachedHeadError: HEAD does not point at a branch.
    """
    try:
        repo = git.Repo(path, search_parent_directories=True)
    except (git.InvalidGitRepositoryError, git.NoSuchPathError):
        raise NotARepositoryError(f"Not a git repository: {path}", path=path) from None
    try:
        if repo.head.is_detached:
            raise DetachedHeadError(
                f"HEAD is detached in {repo.working_tree_dir}",
                path=path,
                hint="Check out a branch or pass 'head' explicitly",
            )
        return repo.active_branch.name
    finally:
        repo.close()
