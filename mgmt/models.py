"""
Console Database Models

The console keeps its own small database. It only stores which process group
each console user works in, plus that user's permissions. Everything else is
read live from the flow API.
"""

from sqlalchemy import Column, Integer, String, Enum, Boolean, DateTime
from sqlalchemy.orm import declarative_base
from datetime import datetime
import enum

Base = declarative_base()


class UserType(str, enum.Enum):
    """User type, selects default permissions"""
    ADMIN = "ADMIN"  # read, write, delete
    USER = "USER"  # read, write
    READONLY = "READONLY"  # read only


class UserMapping(Base):
    """Console user mapped to the process group they operate on"""
    __tablename__ = "user_mappings"

    id = Column(Integer, primary_key=True)
    username = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=False)  # bcrypt hash

    process_group_id = Column(String, nullable=False, index=True)
    process_group_name = Column(String, nullable=False, default="")

    # Permissions
    user_type = Column(Enum(UserType), default=UserType.USER)
    can_read = Column(Boolean, default=True)
    can_write = Column(Boolean, default=False)
    can_delete = Column(Boolean, default=False)

    # Tracking
    created_at = Column(DateTime, default=datetime.utcnow)
    last_accessed_at = Column(DateTime, default=datetime.utcnow)

    def permissions(self) -> dict:
        return {
            "can_read": bool(self.can_read),
            "can_write": bool(self.can_write),
            "can_delete": bool(self.can_delete),
        }

    def to_dict(self) -> dict:
        return {
            "username": self.username,
            "process_group_id": self.process_group_id,
            "process_group_name": self.process_group_name,
            "user_type": self.user_type.value if self.user_type else None,
            "permissions": self.permissions(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "last_accessed_at": self.last_accessed_at.isoformat() if self.last_accessed_at else None,
        }
