"""Pydantic schemas for policy replication endpoints."""

from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SubmitReplicationRequest(BaseModel):
    """Request body for starting a replication."""
    model_config = ConfigDict(populate_by_name=True)

    source: Optional[str] = None
    source_host: Optional[str] = Field(default=None, alias="sourceHost")
    source_uuid: Optional[str] = Field(default=None, alias="sourceUUID")
    source_url: Optional[str] = Field(default=None, alias="sourceUrl")
    targets: List[str] = Field(default_factory=list)
    target: Optional[str] = None
    target_host: Optional[str] = Field(default=None, alias="targetHost")
    target_uuid: Optional[str] = Field(default=None, alias="targetUUID")
    policy_id: Optional[str] = Field(default=None, alias="policyId")
    policy_name: Optional[str] = Field(default=None, alias="policyName")
    target_policy_name: Optional[str] = Field(default=None, alias="targetPolicyName")

    @field_validator("targets", mode="before")
    @classmethod
    def split_targets(cls, value: Union[str, List[str], None]) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [t.strip() for t in value.split(",") if t.strip()]
        return value

    def source_identifier(self) -> Optional[str]:
        return self.source or self.source_host or self.source_uuid

    def target_identifiers(self) -> List[str]:
        extra = [t for t in (self.target, self.target_host, self.target_uuid) if t]
        return list(self.targets) + extra


class PolicyStatus(BaseModel):
    """Status record for one policy on a target."""
    id: str
    name: Optional[str] = None
    enforcementMode: Optional[str] = None
    state: str
    path: Optional[str] = None
    versionTimestamp: Optional[str] = None
    source: Optional[str] = None
    target: str
    error: Optional[str] = None


class SubmitReplicationResponse(BaseModel):
    """Response model for an accepted replication."""
    accepted: List[PolicyStatus]


class DeletePolicyResponse(BaseModel):
    """Response model for policy deletion."""
    msg: str


class ErrorResponse(BaseModel):
    """Response model for errors."""
    detail: str
    code: str
