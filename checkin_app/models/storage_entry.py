"""기기별 영속 키-값 저장소 모델 정의입니다."""

from sqlalchemy import Column, Integer, String, Text, DateTime, UniqueConstraint
from sqlalchemy.sql import func

from checkin_app.database import Base


class StorageEntry(Base):
    __tablename__ = "device_storage"

    entry_id = Column(Integer, primary_key=True, autoincrement=True)
    device_id = Column(String(64), nullable=False, index=True)
    key = Column(String(255), nullable=False)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("device_id", "key", name="uq_device_storage_device_key"),
    )
