"""
User Process Group Mapping Service

Maps console users to the process group they operate on. This is the
identity-mapping collaborator of the root-id resolver: it answers "which
group belongs to these credentials" and provides the default-group fallback
lookup used when live root resolution keeps failing.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

import bcrypt
from sqlalchemy import select, func

from controlplane import config
from controlplane.errors import FlowClientError, ResolutionFailure, ValidationFailure
from controlplane.models import UserCredentials
from mgmt.database import SessionLocal
from mgmt.models import UserMapping, UserType

logger = logging.getLogger(__name__)

ROOT_PROCESS_GROUP_NAME = "Root Process Group"
UNKNOWN_PROCESS_GROUP_NAME = "Unknown Process Group"


class UserProcessGroupMappingService:
    def __init__(
        self,
        session_factory=SessionLocal,
        root_id_lookup: Optional[Callable[..., str]] = None,
        default_process_group_id: str = config.DEFAULT_PROCESS_GROUP_ID,
        bcrypt_rounds: int = 12,
    ):
        """
        Args:
            session_factory: SQLAlchemy session factory for the console database
            root_id_lookup: Live root process group lookup taking an optional
                ``force_refresh`` (default-group fallback, root refresh)
            default_process_group_id: Static default group; skips the live lookup
            bcrypt_rounds: bcrypt cost factor for stored password hashes
        """
        self._session_factory = session_factory
        self.root_id_lookup = root_id_lookup
        self.default_process_group_id = default_process_group_id
        self.bcrypt_rounds = bcrypt_rounds
        self._root_process_group_id: Optional[str] = None

    def _hash(self, password: str) -> str:
        return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=self.bcrypt_rounds)).decode()

    def _find(self, db, username: str) -> Optional[UserMapping]:
        return db.scalars(select(UserMapping).where(UserMapping.username == username)).first()

    # Authentication

    def authenticate_user(self, credentials: UserCredentials) -> Optional[Dict]:
        """Return the user's mapping if the credentials match, else None."""
        db = self._session_factory()
        try:
            mapping = self._find(db, credentials.username)
            if mapping is None:
                logger.warning(f"User not found: {credentials.username}")
                return None
            if not bcrypt.checkpw(credentials.password.encode(), mapping.password_hash.encode()):
                logger.warning(f"Invalid password for user: {credentials.username}")
                return None
            mapping.last_accessed_at = datetime.utcnow()
            db.commit()
            logger.info(f"User authenticated: {mapping.username} -> Process Group: {mapping.process_group_name}")
            return mapping.to_dict()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def get_user_mapping(self, credentials: UserCredentials) -> Optional[Dict]:
        return self.authenticate_user(credentials)

    def get_process_group_id_for_user(self, credentials: UserCredentials) -> Optional[str]:
        mapping = self.authenticate_user(credentials)
        return mapping["process_group_id"] if mapping else None

    def validate_user_permissions(self, credentials: UserCredentials, action: str) -> bool:
        """action is one of 'read', 'write', 'delete'."""
        mapping = self.authenticate_user(credentials)
        if not mapping:
            return False
        return bool(mapping["permissions"].get(f"can_{action}", False))

    # Administration

    def add_user_mapping(
        self,
        username: str,
        password: str,
        process_group_id: str,
        process_group_name: str,
        permissions: Dict[str, bool],
        user_type: UserType = UserType.USER,
    ) -> Dict:
        """Create or replace a user's mapping."""
        db = self._session_factory()
        try:
            mapping = self._find(db, username)
            if mapping is None:
                mapping = UserMapping(username=username, created_at=datetime.utcnow())
                db.add(mapping)
            mapping.password_hash = self._hash(password)
            mapping.process_group_id = process_group_id
            mapping.process_group_name = process_group_name
            mapping.user_type = UserType(user_type)
            mapping.can_read = bool(permissions.get("can_read", False))
            mapping.can_write = bool(permissions.get("can_write", False))
            mapping.can_delete = bool(permissions.get("can_delete", False))
            mapping.last_accessed_at = datetime.utcnow()
            db.commit()
            logger.info(f"Added user mapping: {username} -> {process_group_name}")
            return mapping.to_dict()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to add user mapping for {username}: {e}")
            raise
        finally:
            db.close()

    def create_user_with_default_permissions(
        self,
        username: str,
        password: str,
        process_group_id: str,
        process_group_name: str,
        user_type: UserType = UserType.USER,
    ) -> Dict:
        return self.add_user_mapping(
            username,
            password,
            process_group_id,
            process_group_name,
            self.get_permissions_for_user_type(user_type),
            user_type,
        )

    def remove_user_mapping(self, username: str) -> bool:
        db = self._session_factory()
        try:
            mapping = self._find(db, username)
            if mapping is None:
                return False
            db.delete(mapping)
            db.commit()
            logger.info(f"Removed user mapping: {username}")
            return True
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def update_user_mapping(self, username: str, **updates) -> bool:
        """Update fields of an existing mapping. ``password`` is re-hashed,
        ``permissions`` is a dict of can_* flags."""
        permissions = updates.get("permissions") or {}
        if not isinstance(permissions, dict):
            raise ValidationFailure("permissions must be an object of can_* flags")
        db = self._session_factory()
        try:
            mapping = self._find(db, username)
            if mapping is None:
                return False
            if updates.get("password"):
                mapping.password_hash = self._hash(updates["password"])
            for key in ("process_group_id", "process_group_name"):
                if updates.get(key) is not None:
                    setattr(mapping, key, updates[key])
            if updates.get("user_type") is not None:
                mapping.user_type = UserType(updates["user_type"])
            for flag, value in permissions.items():
                if flag in ("can_read", "can_write", "can_delete"):
                    setattr(mapping, flag, bool(value))
            mapping.last_accessed_at = datetime.utcnow()
            db.commit()
            logger.info(f"Updated user mapping: {username}")
            return True
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def get_all_user_mappings(self) -> List[Dict]:
        db = self._session_factory()
        try:
            return [m.to_dict() for m in db.scalars(select(UserMapping).order_by(UserMapping.username)).all()]
        finally:
            db.close()

    def get_users_by_process_group_id(self, process_group_id: str) -> List[Dict]:
        db = self._session_factory()
        try:
            rows = db.scalars(
                select(UserMapping).where(UserMapping.process_group_id == process_group_id)
            ).all()
            return [m.to_dict() for m in rows]
        finally:
            db.close()

    def user_exists(self, username: str) -> bool:
        db = self._session_factory()
        try:
            return self._find(db, username) is not None
        finally:
            db.close()

    def get_user_count(self) -> int:
        db = self._session_factory()
        try:
            return db.scalar(select(func.count()).select_from(UserMapping)) or 0
        finally:
            db.close()

    def get_process_group_stats(self) -> Dict:
        mappings = self.get_all_user_mappings()
        process_groups: Dict[str, int] = {}
        permissions = {"can_read": 0, "can_write": 0, "can_delete": 0}
        for mapping in mappings:
            group_id = mapping["process_group_id"]
            process_groups[group_id] = process_groups.get(group_id, 0) + 1
            for flag, allowed in mapping["permissions"].items():
                if allowed:
                    permissions[flag] += 1
        return {
            "total_users": len(mappings),
            "process_groups": process_groups,
            "permissions": permissions,
        }

    def get_permissions_for_user_type(self, user_type: UserType) -> Dict[str, bool]:
        return dict(config.DEFAULT_PERMISSIONS[UserType(user_type).value])

    # Process group identity

    def _lookup_root(self, force_refresh: bool = False) -> str:
        if self.root_id_lookup is None:
            raise ResolutionFailure("No root process group lookup configured")
        try:
            root_id = self.root_id_lookup(force_refresh=True) if force_refresh else self.root_id_lookup()
        except FlowClientError as e:
            logger.error(f"Failed to fetch root process group ID: {e}")
            raise ResolutionFailure(
                "Unable to fetch root process group ID. Please ensure the flow API is accessible "
                "and authentication is successful."
            ) from e
        self._root_process_group_id = root_id
        return root_id

    def get_default_process_group_id(self) -> str:
        """Default group for callers without an id or credentials."""
        if self.default_process_group_id:
            return self.default_process_group_id
        return self._lookup_root()

    def is_known_process_group_id(self, process_group_id: str) -> bool:
        return process_group_id == self._root_process_group_id

    def get_process_group_name(self, process_group_id: str) -> str:
        if process_group_id == self._root_process_group_id:
            return ROOT_PROCESS_GROUP_NAME
        users = self.get_users_by_process_group_id(process_group_id)
        if users:
            return users[0]["process_group_name"]
        return UNKNOWN_PROCESS_GROUP_NAME

    def refresh_root_process_group_id(self) -> str:
        """Re-read the root id; users mapped to the previous root follow it."""
        logger.info("Refreshing root process group ID...")
        previous = self._root_process_group_id
        root_id = self._lookup_root(force_refresh=True)
        if previous and previous != root_id:
            db = self._session_factory()
            try:
                rows = db.scalars(
                    select(UserMapping).where(UserMapping.process_group_id == previous)
                ).all()
                for mapping in rows:
                    mapping.process_group_id = root_id
                db.commit()
                logger.info(f"Moved {len(rows)} user mappings from {previous} to new root {root_id}")
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()
        logger.info(f"Root process group ID refreshed: {root_id}")
        return root_id
