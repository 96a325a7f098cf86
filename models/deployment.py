import enum
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Text, JSON, Index, UniqueConstraint, CheckConstraint
from .base import Base
from .types import UTCDateTime


class DeploymentStatus(str, enum.Enum):
    PENDING = "pending"
    DEPLOYING = "deploying"
    DEPLOYED = "deployed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"

    @classmethod
    def values(cls):
        return [s.value for s in cls]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class Deployment(Base):
    __tablename__ = 'deployments'
    id = Column(String(36), primary_key=True, default=new_id)
    request_id = Column(String(36), nullable=False)
    domain = Column(Text, nullable=False)
    app_name = Column(Text, nullable=False)
    docker_image = Column(Text, nullable=False)
    port = Column(Integer, nullable=False)
    env = Column(JSON, nullable=False, default=list)  # 순서 보존
    version = Column(Integer, nullable=False, default=1)
    updated_at = Column(UTCDateTime(timezone=True), nullable=False)
    deployed_at = Column(UTCDateTime(timezone=True), nullable=True)
    status = Column(String(20), nullable=False, default=DeploymentStatus.PENDING.value)
    created_at = Column(UTCDateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        # (domain, app_name) 별로 버전은 하나만 존재
        UniqueConstraint('domain', 'app_name', 'version', name='uq_deployments_domain_app_version'),
        CheckConstraint(
            "status IN ('pending', 'deploying', 'deployed', 'failed', 'rolled_back')",
            name='ck_deployments_status',
        ),
        Index('idx_deployments_domain_app', 'domain', 'app_name'),
        Index('idx_deployments_status', 'status'),
        Index('idx_deployments_updated_at', 'updated_at'),
        Index('idx_deployments_request_id', 'request_id'),
    )

    @property
    def key(self):
        return (self.domain, self.app_name)

    def __repr__(self):
        return f"<Deployment(id={self.id}, domain='{self.domain}', app_name='{self.app_name}', version={self.version}, status='{self.status}')>"
