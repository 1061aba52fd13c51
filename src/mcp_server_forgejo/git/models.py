"""Repository context records"""

from dataclasses import asdict, dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class RemoteURL:
    """Owner/name parsed from a git remote URL."""

    host: str
    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(frozen=True)
class RepositoryContext:
    """Identity of the repository a working directory belongs to."""

    owner: str
    name: str
    remote_url: str
    host: str
    remote_name: str
    root: str
    resolved_at: float

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["repository"] = self.full_name
        return data

    def __str__(self) -> str:
        return f"{self.full_name} ({self.remote_url})"
