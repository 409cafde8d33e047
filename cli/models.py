"""Command request data types for CLI."""

from dataclasses import dataclass
from typing import Literal


@dataclass(frozen=True)
class StatusCommand:
    """Show policies tracked for or present on a target."""

    target: str
    name: str | None = None
    command: Literal["status"] = "status"


@dataclass(frozen=True)
class ReplicateCommand:
    """Replicate a policy from a source node to targets."""

    source: str
    targets: tuple[str, ...]
    policy: str
    new_name: str | None = None
    command: Literal["replicate"] = "replicate"


@dataclass(frozen=True)
class ImportUrlCommand:
    """Import a policy file served at a URL onto targets."""

    url: str
    targets: tuple[str, ...]
    name: str
    command: Literal["import-url"] = "import-url"


@dataclass(frozen=True)
class DeleteCommand:
    """Delete a policy from a target or clear its failed replication."""

    target: str
    policy: str
    command: Literal["delete"] = "delete"


CommandRequest = (
    StatusCommand
    | ReplicateCommand
    | ImportUrlCommand
    | DeleteCommand
)
