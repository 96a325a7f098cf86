from sqlalchemy import Column, String, Text
from .base import Base
from .deployment import utcnow
from .types import UTCDateTime


class RegistryCredential(Base):
    __tablename__ = 'docker_credentials'
    # 컬럼명은 registry, 속성명은 declarative 예약어와 겹치지 않게
    registry_name = Column("registry", String(255), primary_key=True)
    username = Column(Text, nullable=False)
    password = Column(Text, nullable=False)  # 암호화는 범위 밖
    updated_at = Column(UTCDateTime(timezone=True), nullable=False, default=utcnow)
    created_at = Column(UTCDateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self):
        return f"<RegistryCredential(registry='{self.registry_name}', username='{self.username}')>"
