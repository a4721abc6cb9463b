"""Persistence capability shared by the route layer.

``Storage`` is the single seam between HTTP handlers and persistence: the QR
registry, the append-only scan event store, and the user/folder collaborators
all live behind it. ``SqlStorage`` is the production backend; ``MemStorage``
keeps everything in process and is what the tests inject.
"""
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, List, Optional
from fastapi import Depends
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from . import models
from .db import get_db

logger = logging.getLogger(__name__)

# Fields a QR code owner may change after creation.
UPDATABLE_QR_FIELDS = ("content", "type", "logo", "folder_id")


class StorageFailure(Exception):
    """The persistence layer could not complete an operation."""


class UsernameTaken(Exception):
    """A user with this username already exists."""


class Storage(ABC):

    # users

    @abstractmethod
    def create_user(self, username: str, hashed_password: str) -> models.User:
        """Raises UsernameTaken when the name is in use."""

    @abstractmethod
    def get_user(self, user_id: int) -> Optional[models.User]: ...

    @abstractmethod
    def get_user_by_username(self, username: str) -> Optional[models.User]: ...

    # folders

    @abstractmethod
    def create_folder(self, name: str, owner_id: int) -> models.Folder: ...

    @abstractmethod
    def get_folder(self, folder_id: int) -> Optional[models.Folder]: ...

    @abstractmethod
    def list_folders(self, owner_id: int) -> List[models.Folder]: ...

    @abstractmethod
    def delete_folder(self, folder_id: int) -> None:
        """Remove the folder; codes filed in it become unfiled."""

    # QR registry

    @abstractmethod
    def create_qrcode(self, content: str, type: models.QRType, owner_id: int,
                      logo: Optional[str] = None, folder_id: Optional[int] = None) -> models.QRCode: ...

    @abstractmethod
    def get_qrcode(self, qr_id: int) -> Optional[models.QRCode]:
        """Pure lookup; None when the code does not exist."""

    @abstractmethod
    def list_qrcodes(self, owner_id: int, folder_id: Optional[int] = None) -> List[models.QRCode]: ...

    @abstractmethod
    def update_qrcode(self, qr_id: int, fields: Dict[str, Any]) -> Optional[models.QRCode]: ...

    @abstractmethod
    def delete_qrcode(self, qr_id: int) -> None:
        """Remove the code. Its scans are kept."""

    # scan event store

    @abstractmethod
    def append_scan(self, qr_id: int, device: Optional[str], location: Optional[str]) -> models.Scan:
        """Record one scan; id and server timestamp are assigned atomically."""

    @abstractmethod
    def list_scans(self, qr_id: int) -> List[models.Scan]:
        """All scans for ``qr_id`` in insertion order."""


def _check_fields(fields: Dict[str, Any]):
    unknown = set(fields) - set(UPDATABLE_QR_FIELDS)
    if unknown:
        raise ValueError(f"Cannot update QR code fields: {sorted(unknown)}")


class MemStorage(Storage):
    """Thread-safe in-memory backend."""

    def __init__(self):
        self._lock = threading.Lock()
        self._users: Dict[int, models.User] = {}
        self._folders: Dict[int, models.Folder] = {}
        self._qrcodes: Dict[int, models.QRCode] = {}
        self._scans: Dict[int, models.Scan] = {}
        self._current_id = {"users": 1, "folders": 1, "qrcodes": 1, "scans": 1}

    def _next_id(self, table: str) -> int:
        next_id = self._current_id[table]
        self._current_id[table] += 1
        return next_id

    def create_user(self, username, hashed_password):
        with self._lock:
            if any(u.username == username for u in self._users.values()):
                raise UsernameTaken(username)
            user = models.User(id=self._next_id("users"), username=username,
                               hashed_password=hashed_password, created_at=models.utcnow())
            self._users[user.id] = user
            return user

    def get_user(self, user_id):
        return self._users.get(user_id)

    def get_user_by_username(self, username):
        with self._lock:
            return next((u for u in self._users.values() if u.username == username), None)

    def create_folder(self, name, owner_id):
        with self._lock:
            folder = models.Folder(id=self._next_id("folders"), name=name, owner_id=owner_id,
                                   created_at=models.utcnow())
            self._folders[folder.id] = folder
            return folder

    def get_folder(self, folder_id):
        return self._folders.get(folder_id)

    def list_folders(self, owner_id):
        with self._lock:
            return [f for f in self._folders.values() if f.owner_id == owner_id]

    def delete_folder(self, folder_id):
        with self._lock:
            self._folders.pop(folder_id, None)
            for qr in self._qrcodes.values():
                if qr.folder_id == folder_id:
                    qr.folder_id = None

    def create_qrcode(self, content, type, owner_id, logo=None, folder_id=None):
        with self._lock:
            now = models.utcnow()
            qr = models.QRCode(id=self._next_id("qrcodes"), content=content, type=models.QRType(type),
                               logo=logo, folder_id=folder_id, owner_id=owner_id,
                               created_at=now, updated_at=now)
            self._qrcodes[qr.id] = qr
            return qr

    def get_qrcode(self, qr_id):
        return self._qrcodes.get(qr_id)

    def list_qrcodes(self, owner_id, folder_id=None):
        with self._lock:
            return [
                qr for qr in self._qrcodes.values()
                if qr.owner_id == owner_id and (folder_id is None or qr.folder_id == folder_id)
            ]

    def update_qrcode(self, qr_id, fields):
        _check_fields(fields)
        with self._lock:
            qr = self._qrcodes.get(qr_id)
            if qr is None:
                return None
            for key, value in fields.items():
                setattr(qr, key, value)
            qr.updated_at = models.utcnow()
            return qr

    def delete_qrcode(self, qr_id):
        with self._lock:
            self._qrcodes.pop(qr_id, None)

    def append_scan(self, qr_id, device, location):
        with self._lock:
            scan = models.Scan(id=self._next_id("scans"), qr_id=qr_id, timestamp=models.utcnow(),
                               device=device, location=location)
            self._scans[scan.id] = scan
            return scan

    def list_scans(self, qr_id):
        with self._lock:
            return [s for s in self._scans.values() if s.qr_id == qr_id]


# Serialises timestamp assignment with the insert so that, within one process,
# timestamp order matches id order.
_scan_append_lock = threading.Lock()


class SqlStorage(Storage):
    """SQLAlchemy backend bound to one session."""

    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def _guard(self, action: str):
        try:
            yield
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Storage error while trying to %s", action, exc_info=True)
            raise StorageFailure(f"Failed to {action}") from e

    def _add(self, obj, action: str):
        with self._guard(action):
            self.db.add(obj)
            self.db.commit()
            self.db.refresh(obj)
        return obj

    def create_user(self, username, hashed_password):
        user = models.User(username=username, hashed_password=hashed_password)
        with self._guard("create user"):
            try:
                self.db.add(user)
                self.db.commit()
            except IntegrityError as e:
                # lost a race with a concurrent registration
                self.db.rollback()
                raise UsernameTaken(username) from e
            self.db.refresh(user)
        return user

    def get_user(self, user_id):
        with self._guard("load user"):
            return self.db.get(models.User, user_id)

    def get_user_by_username(self, username):
        with self._guard("load user"):
            return self.db.query(models.User).filter(models.User.username == username).first()

    def create_folder(self, name, owner_id):
        return self._add(models.Folder(name=name, owner_id=owner_id), "create folder")

    def get_folder(self, folder_id):
        with self._guard("load folder"):
            return self.db.get(models.Folder, folder_id)

    def list_folders(self, owner_id):
        with self._guard("list folders"):
            return (
                self.db.query(models.Folder)
                .filter(models.Folder.owner_id == owner_id)
                .order_by(models.Folder.id)
                .all()
            )

    def delete_folder(self, folder_id):
        with self._guard("delete folder"):
            self.db.query(models.QRCode).filter(models.QRCode.folder_id == folder_id)\
                .update({models.QRCode.folder_id: None}, synchronize_session=False)
            self.db.query(models.Folder).filter(models.Folder.id == folder_id).delete()
            self.db.commit()

    def create_qrcode(self, content, type, owner_id, logo=None, folder_id=None):
        qr = models.QRCode(content=content, type=models.QRType(type), owner_id=owner_id,
                           logo=logo, folder_id=folder_id)
        return self._add(qr, "create QR code")

    def get_qrcode(self, qr_id):
        with self._guard("load QR code"):
            return self.db.get(models.QRCode, qr_id)

    def list_qrcodes(self, owner_id, folder_id=None):
        with self._guard("list QR codes"):
            q = self.db.query(models.QRCode).filter(models.QRCode.owner_id == owner_id)
            if folder_id is not None:
                q = q.filter(models.QRCode.folder_id == folder_id)
            return q.order_by(models.QRCode.id).all()

    def update_qrcode(self, qr_id, fields):
        _check_fields(fields)
        with self._guard("update QR code"):
            qr = self.db.get(models.QRCode, qr_id)
            if qr is None:
                return None
            for key, value in fields.items():
                setattr(qr, key, value)
            self.db.commit()
            self.db.refresh(qr)
            return qr

    def delete_qrcode(self, qr_id):
        with self._guard("delete QR code"):
            self.db.query(models.QRCode).filter(models.QRCode.id == qr_id).delete()
            self.db.commit()

    def append_scan(self, qr_id, device, location):
        with _scan_append_lock:
            scan = models.Scan(qr_id=qr_id, timestamp=models.utcnow(), device=device, location=location)
            return self._add(scan, "record scan")

    def list_scans(self, qr_id):
        with self._guard("list scans"):
            return (
                self.db.query(models.Scan)
                .filter(models.Scan.qr_id == qr_id)
                .order_by(models.Scan.id)
                .all()
            )


def get_storage(db: Session = Depends(get_db)) -> Storage:
    """Dependency providing the storage backend for a request."""
    return SqlStorage(db)
