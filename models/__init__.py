# 관계 모델 명시적 import (SQLAlchemy registry 등록)
from .base import Base
from .deployment import Deployment, DeploymentStatus
from .types import UTCDateTime, to_utc
from .registry_credential import RegistryCredential

__all__ = ["Base", "Deployment", "DeploymentStatus", "RegistryCredential", "UTCDateTime", "to_utc"]
