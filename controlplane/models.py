"""Request models shared by the control-plane client and the console."""

from typing import Dict, Optional

from pydantic import BaseModel, Field


class UserCredentials(BaseModel):
    username: str
    password: str


class Position(BaseModel):
    x: float
    y: float


class Bundle(BaseModel):
    group: str = Field(min_length=1)
    artifact: str = Field(min_length=1)
    version: str = Field(min_length=1)


class ProcessGroupConfiguration(BaseModel):
    name: str
    parameter_context_id: Optional[str] = None
    apply_recursively: bool = False
    execution_engine: str = "inherited"
    flowfile_concurrency: str = "unbounded"
    default_flowfile_expiration: str = "0 sec"
    default_back_pressure_object_threshold: str = "10000"
    comments: Optional[str] = None


class UserMappingUpdate(BaseModel):
    """Fields of a user mapping the console may change; anything else is ignored."""

    password: Optional[str] = None
    process_group_id: Optional[str] = None
    process_group_name: Optional[str] = None
    user_type: Optional[str] = None
    permissions: Optional[Dict[str, bool]] = None
