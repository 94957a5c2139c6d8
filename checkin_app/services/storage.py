"""기기별 영속 키-값 저장소 인터페이스와 SQLAlchemy 구현입니다."""

from typing import List, Optional, Protocol

from sqlalchemy.orm import Session

from checkin_app.models.storage_entry import StorageEntry


class KeyValueStorage(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...

    def keys(self) -> List[str]: ...


class SqlStorage:
    """One device's storage, rows scoped by ``device_id``."""

    def __init__(self, db: Session, device_id: str):
        self.db = db
        self.device_id = device_id

    def _entry(self, key: str) -> Optional[StorageEntry]:
        return (
            self.db.query(StorageEntry)
            .filter(StorageEntry.device_id == self.device_id, StorageEntry.key == key)
            .first()
        )

    def get(self, key: str) -> Optional[str]:
        entry = self._entry(key)
        return entry.value if entry else None

    def set(self, key: str, value: str) -> None:
        entry = self._entry(key)
        if entry:
            entry.value = value
        else:
            self.db.add(StorageEntry(device_id=self.device_id, key=key, value=value))
        self.db.commit()

    def remove(self, key: str) -> None:
        self.db.query(StorageEntry).filter(
            StorageEntry.device_id == self.device_id,
            StorageEntry.key == key,
        ).delete()
        self.db.commit()

    def keys(self) -> List[str]:
        rows = (
            self.db.query(StorageEntry.key)
            .filter(StorageEntry.device_id == self.device_id)
            .order_by(StorageEntry.entry_id)
            .all()
        )
        return [row[0] for row in rows]
