"""Command handler functions for CLI operations."""

from pathlib import Path
from typing import Optional

from common.logging_config import get_logger
from cli.models import (
    DeleteCommand,
    ImportUrlCommand,
    ReplicateCommand,
    StatusCommand,
)
from cli.config import Config
from cli.replicator_client import ReplicatorClient

logger = get_logger(__name__)


_client: Optional[ReplicatorClient] = None


def get_client() -> ReplicatorClient:
    """
    Get or create global ReplicatorClient instance.
    """
    global _client
    if _client is None:
        logger.debug("Creating new ReplicatorClient instance")
        config = Config(Path.home() / '.policy-replicator' / 'config.json')
        _client = ReplicatorClient(config)
    return _client


def handle_status(cmd: StatusCommand, client: Optional[ReplicatorClient] = None) -> str:
    """
    Handle 'status' command.

    Args:
        cmd: StatusCommand with target and optional name prefix
        client: Optional ReplicatorClient for dependency injection (testing)

    Returns:
        Formatted status listing
    """
    if client is None:
        client = get_client()
    return client.status(cmd.target, cmd.name)


def handle_replicate(cmd: ReplicateCommand, client: Optional[ReplicatorClient] = None) -> str:
    """
    Handle 'replicate' command.

    Args:
        cmd: ReplicateCommand with source, targets, policy and optional new name
        client: Optional ReplicatorClient for dependency injection (testing)

    Returns:
        Accepted requests or error message
    """
    logger.info(f"Executing replicate command: {cmd.policy} from {cmd.source} to {list(cmd.targets)}")
    if client is None:
        client = get_client()
    return client.replicate(cmd.source, list(cmd.targets), cmd.policy, cmd.new_name)


def handle_import_url(cmd: ImportUrlCommand, client: Optional[ReplicatorClient] = None) -> str:
    """Handle 'import-url' command."""
    logger.info(f"Executing import-url command: {cmd.url} to {list(cmd.targets)}")
    if client is None:
        client = get_client()
    return client.import_url(cmd.url, list(cmd.targets), cmd.name)


def handle_delete(cmd: DeleteCommand, client: Optional[ReplicatorClient] = None) -> str:
    """Handle 'delete' command."""
    if client is None:
        client = get_client()
    return client.delete(cmd.target, cmd.policy)
