"""
Pydantic schemas for the weatherio HTTP API.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CredentialsPayload(BaseModel):
    email: Optional[str] = Field(default=None, max_length=320)
    password: Optional[str] = None


class UserSummary(BaseModel):
    email: str


class AuthResponse(BaseModel):
    message: str
    user: UserSummary


class OverrideKeyPayload(BaseModel):
    # Coordinates arrive as JSON numbers from some clients; they are stored as text.
    model_config = ConfigDict(coerce_numbers_to_str=True)

    lat: str
    lon: str
    date: str
    email: str


class OverridePayload(OverrideKeyPayload):
    values: Optional[dict] = None


class OverrideResponse(BaseModel):
    id: Optional[str] = None
    lat: str
    lon: str
    date: str
    newValues: Optional[dict] = None
    updatedAt: str
    updatedBy: str
    version: int
    active: bool


class RemoveOverrideResponse(BaseModel):
    removed: bool


class StatusResponse(BaseModel):
    status: str
    service: str


class HealthResponse(BaseModel):
    status: str
    time: str
