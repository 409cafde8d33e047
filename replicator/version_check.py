"""Major-version compatibility between source and target nodes."""

from typing import Optional

from common.types import NodeAddress
from replicator.exceptions import VersionIncompatibleError


def major_version(version: Optional[str]) -> Optional[int]:
    """Leading numeric component of a version string, or None if unknown."""
    if not version:
        return None
    head = str(version).strip().split(".", 1)[0]
    return int(head) if head.isdigit() else None


def check_compatible(source: NodeAddress, target: NodeAddress) -> None:
    """
    Require source and target to share a major version.

    Nodes that do not report a version are assumed compatible.

    Raises:
        VersionIncompatibleError: If both majors are known and differ
    """
    source_major = major_version(source.version)
    target_major = major_version(target.version)
    if source_major is None or target_major is None:
        return
    if source_major != target_major:
        raise VersionIncompatibleError(
            f"source {source.key} runs version {source.version} but target {target.key} "
            f"runs version {target.version}"
        )
