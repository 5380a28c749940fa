"""
Console Database Initialization

Manages the console's own database (console.db). It holds the user to
process group mappings and nothing the flow API already owns.
"""

import os
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, scoped_session
from mgmt.models import Base
import logging

logger = logging.getLogger(__name__)

_DEFAULT_DB_PATH = (Path(__file__).resolve().parent / "data" / "console.db")
DATABASE_URL = str(os.getenv("FLOW_CONSOLE_DB_URL", f"sqlite:///{_DEFAULT_DB_PATH.as_posix()}"))

if DATABASE_URL.startswith("sqlite:///") and ":memory:" not in DATABASE_URL:
    os.makedirs(Path(DATABASE_URL[len("sqlite:///"):]).parent, exist_ok=True)

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, connect_args=_connect_args)
SessionLocal = scoped_session(sessionmaker(autocommit=False, autoflush=False, bind=engine))


def init_db(bind=None):
    """Create the schema if it does not exist yet."""
    logger.info("Initializing console database...")
    Base.metadata.create_all(bind=bind or engine)
    logger.info("Console database initialization complete")


def reset_db(bind=None):
    """
    Drop all tables and recreate (DESTRUCTIVE - dev/test only).
    Deletes every user mapping.
    """
    logger.warning("Resetting console database - all user mappings will be lost!")
    Base.metadata.drop_all(bind=bind or engine)
    Base.metadata.create_all(bind=bind or engine)
    logger.info("Console database reset complete")
