"""Policy replication API routes."""

from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, status

from common.logging_config import get_logger
from replicator.orchestrator import ReplicationOrchestrator
from replicator.schemas.replication import (
    DeletePolicyResponse,
    PolicyStatus,
    SubmitReplicationRequest,
    SubmitReplicationResponse
)
from replicator.service_locator import require_orchestrator

logger = get_logger(__name__)

router = APIRouter(prefix="/policies", tags=["Policies"])


def _first(*values: Optional[str]) -> Optional[str]:
    return next((value for value in values if value), None)


@router.get("")
async def get_policies(
    target: Optional[str] = Query(None),
    target_host: Optional[str] = Query(None, alias="targetHost"),
    target_uuid: Optional[str] = Query(None, alias="targetUUID"),
    name: Optional[str] = Query(None, description="Return the first policy whose name starts with this"),
    orchestrator: ReplicationOrchestrator = Depends(require_orchestrator)
):
    """
    Policies tracked for or present on a target node.

    Parameters:
        - target / targetHost / targetUUID: Target node (defaults to the local node)
        - name: Optional policy name prefix

    Returns:
        - List of policy status records, or a single record when name is given

    Raises:
        - 404: Target not trusted, or no policy matches name
        - 503: Target unreachable
    """
    return await orchestrator.status(_first(target, target_host, target_uuid), name)


@router.get("/{target}")
async def get_policies_on_target(
    target: str,
    name: Optional[str] = Query(None),
    orchestrator: ReplicationOrchestrator = Depends(require_orchestrator)
):
    """Path-segment variant of GET /policies."""
    return await orchestrator.status(target, name)


@router.post("", response_model=SubmitReplicationResponse, status_code=status.HTTP_202_ACCEPTED)
async def submit_replication(
    body: Optional[SubmitReplicationRequest] = Body(None),
    source: Optional[str] = Query(None),
    source_host: Optional[str] = Query(None, alias="sourceHost"),
    source_uuid: Optional[str] = Query(None, alias="sourceUUID"),
    source_url: Optional[str] = Query(None, alias="sourceUrl"),
    targets: Optional[str] = Query(None, description="Comma-separated target nodes"),
    target: Optional[str] = Query(None),
    target_host: Optional[str] = Query(None, alias="targetHost"),
    target_uuid: Optional[str] = Query(None, alias="targetUUID"),
    policy_id: Optional[str] = Query(None, alias="policyId"),
    policy_name: Optional[str] = Query(None, alias="policyName"),
    target_policy_name: Optional[str] = Query(None, alias="targetPolicyName"),
    orchestrator: ReplicationOrchestrator = Depends(require_orchestrator)
):
    """
    Start replicating a policy to one or more targets.

    Parameters may be given as query parameters or as a JSON body; body
    fields take precedence.

    Returns:
        - accepted: Initial status record per target (state REQUESTED)

    Raises:
        - 400: Missing parameters or incompatible versions
        - 404: Node not trusted or policy not found on the source
        - 409: Policy already tracked for a target
    """
    request = SubmitReplicationRequest(
        source=source,
        source_host=source_host,
        source_uuid=source_uuid,
        source_url=source_url,
        targets=targets,
        target=target,
        target_host=target_host,
        target_uuid=target_uuid,
        policy_id=policy_id,
        policy_name=policy_name,
        target_policy_name=target_policy_name,
    )
    if body is not None:
        request = request.model_copy(update=body.model_dump(exclude_unset=True))

    accepted = await orchestrator.submit(
        source=request.source_identifier(),
        source_url=request.source_url,
        targets=request.target_identifiers(),
        artifact_id=request.policy_id,
        artifact_name=request.policy_name,
        target_artifact_name=request.target_policy_name,
    )
    return SubmitReplicationResponse(
        accepted=[PolicyStatus(**replication.snapshot()) for replication in accepted]
    )


async def _delete(orchestrator, target, policy_id, policy_name) -> DeletePolicyResponse:
    message = await orchestrator.delete(target, artifact_id=policy_id, artifact_name=policy_name)
    return DeletePolicyResponse(msg=message)


@router.delete("", response_model=DeletePolicyResponse)
async def delete_policy(
    target: Optional[str] = Query(None),
    target_host: Optional[str] = Query(None, alias="targetHost"),
    target_uuid: Optional[str] = Query(None, alias="targetUUID"),
    policy_id: Optional[str] = Query(None, alias="policyId"),
    policy_name: Optional[str] = Query(None, alias="policyName"),
    orchestrator: ReplicationOrchestrator = Depends(require_orchestrator)
):
    """
    Delete a policy from a target, or clear its failed replication.

    Raises:
        - 400: Neither policyId nor policyName given
        - 404: Policy not found
        - 409: Replication of the policy is still in flight
    """
    return await _delete(orchestrator, _first(target, target_host, target_uuid), policy_id, policy_name)


@router.delete("/{target}", response_model=DeletePolicyResponse)
async def delete_policy_on_target(
    target: str,
    policy_id: Optional[str] = Query(None, alias="policyId"),
    policy_name: Optional[str] = Query(None, alias="policyName"),
    orchestrator: ReplicationOrchestrator = Depends(require_orchestrator)
):
    """Path-segment variant of DELETE /policies."""
    return await _delete(orchestrator, target, policy_id, policy_name)
