"""SQLAlchemy 모델 패키지 초기화 모듈입니다."""

from checkin_app.models.storage_entry import StorageEntry
