import uuid
from enum import Enum
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, StrictStr, field_validator
from pydantic import ValidationError as PydanticValidationError
from models.deployment import DeploymentStatus
from utils.exceptions import ValidationError


class DeploymentRequest(BaseModel):
    domain: StrictStr = Field(..., min_length=1)
    app_name: StrictStr = Field(..., min_length=1)
    docker_image: StrictStr = Field(..., min_length=1)
    port: int = Field(..., ge=1, le=65535, strict=True)
    env: List[StrictStr] = []
    updated_at: Optional[datetime] = None  # 없으면 생성 시각 사용

    @field_validator("env", mode="before")
    @classmethod
    def _null_env(cls, value):
        return [] if value is None else value


class DeploymentRead(BaseModel):
    id: str
    request_id: str
    domain: str
    app_name: str
    docker_image: str
    port: int
    env: List[str] = []
    version: int
    updated_at: datetime
    deployed_at: Optional[datetime] = None
    status: str
    created_at: datetime

    model_config = {
        "from_attributes": True
    }


class StatusUpdate(BaseModel):
    status: StrictStr


class DeploymentStats(BaseModel):
    total_deployments: int = 0
    pending_count: int = 0
    deployed_count: int = 0
    failed_count: int = 0


class FailedDeployment(BaseModel):
    index: int
    domain: Optional[str] = None
    app_name: Optional[str] = None
    error: str


class BatchOutcome(str, Enum):
    ALL_SUCCEEDED = "all_succeeded"
    ALL_FAILED = "all_failed"
    PARTIAL = "partial"


class BatchResult(BaseModel):
    request_id: str
    created: List[DeploymentRead] = []
    failed: List[FailedDeployment] = []

    @property
    def processed_count(self) -> int:
        return len(self.created)

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    @property
    def outcome(self) -> BatchOutcome:
        if not self.failed:
            return BatchOutcome.ALL_SUCCEEDED
        if not self.created:
            return BatchOutcome.ALL_FAILED
        return BatchOutcome.PARTIAL


def format_validation_error(exc: PydanticValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else err.get("msg", ""))
    return "; ".join(parts)


def parse_deployment_request(item) -> DeploymentRequest:
    if isinstance(item, DeploymentRequest):
        return item
    if not isinstance(item, dict):
        raise ValidationError(f"deployment item must be an object, got {type(item).__name__}")
    try:
        return DeploymentRequest.model_validate(item)
    except PydanticValidationError as e:
        raise ValidationError(format_validation_error(e)) from e


def parse_status(value) -> DeploymentStatus:
    try:
        return DeploymentStatus(value)
    except ValueError:
        raise ValidationError(f"Invalid status. Must be one of: {', '.join(DeploymentStatus.values())}")


def parse_deployment_id(value) -> str:
    try:
        return str(uuid.UUID(str(value)))
    except ValueError:
        raise ValidationError("Invalid deployment ID")
