"""
HTTP routes for the weatherio API.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import FileResponse, JSONResponse

from weatherio.config import Settings
from weatherio.db import utc_timestamp
from weatherio.dependencies import get_app_settings, get_override_store, get_user_store
from weatherio.exceptions import DatabaseConnectionError, InvalidPasswordError, UserExistsError
from weatherio.overrides import Location, OverrideStore
from weatherio.schemas import (
    AuthResponse,
    CredentialsPayload,
    HealthResponse,
    OverrideKeyPayload,
    OverridePayload,
    OverrideResponse,
    RemoveOverrideResponse,
    StatusResponse,
    UserSummary,
)
from weatherio.users import UserStore

logger = logging.getLogger(__name__)

router = APIRouter()


def _error(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error})


def _static_page(settings: Settings, name: str) -> FileResponse:
    path = Path(settings.static_dir) / name
    if not path.is_file():
        raise HTTPException(status_code=404, detail="Page not found")
    return FileResponse(path)


@router.get("/", response_model=StatusResponse)
def root(settings: Settings = Depends(get_app_settings)):
    return StatusResponse(status="ok", service=settings.service_name)


@router.get("/health", response_model=HealthResponse)
def health():
    return HealthResponse(status="ok", time=utc_timestamp())


@router.post("/register", response_model=AuthResponse, status_code=201)
def register(
    payload: Optional[CredentialsPayload] = None,
    users: UserStore = Depends(get_user_store),
):
    if payload is None or not payload.email or not payload.password:
        return _error(400, "Email and password required")
    try:
        user = users.register(payload.email, payload.password)
    except UserExistsError:
        return _error(400, "User already exists")
    except InvalidPasswordError as exc:
        return _error(400, str(exc))
    except DatabaseConnectionError:
        raise
    except Exception:
        logger.exception("Register error")
        return _error(500, "registration-failed")
    return AuthResponse(
        message="Registration successful", user=UserSummary(email=user.email)
    )


@router.post("/login", response_model=AuthResponse)
def login(
    payload: Optional[CredentialsPayload] = None,
    users: UserStore = Depends(get_user_store),
):
    if payload is None or not payload.email or not payload.password:
        return _error(401, "Invalid email or password")
    try:
        user = users.authenticate(payload.email, payload.password)
    except DatabaseConnectionError:
        raise
    except Exception:
        logger.exception("Login error")
        return _error(500, "login-failed")
    if user is None:
        return _error(401, "Invalid email or password")
    return AuthResponse(message="Login successful", user=UserSummary(email=user.email))


@router.get("/override", response_model=None)
def get_override(
    lat: str = Query(...),
    lon: str = Query(...),
    date: str = Query(...),
    email: str = Query(...),
    store: OverrideStore = Depends(get_override_store),
):
    """
    Latest active override for the key, or an empty object when there is none.
    """
    try:
        record = store.get_latest(Location(lat, lon), date, email)
    except DatabaseConnectionError:
        raise
    except Exception:
        logger.exception("Get override error")
        return _error(500, "get-override-failed")
    return record.as_dict() if record else {}


@router.post("/override", response_model=OverrideResponse, status_code=201)
def add_override(
    payload: OverridePayload,
    store: OverrideStore = Depends(get_override_store),
):
    try:
        record = store.add(
            Location(payload.lat, payload.lon), payload.date, payload.email, payload.values
        )
    except DatabaseConnectionError:
        raise
    except Exception:
        logger.exception("Add override error")
        return _error(500, "add-override-failed")
    return record.as_dict()


@router.delete("/override", response_model=RemoveOverrideResponse)
def remove_override(
    payload: OverrideKeyPayload,
    store: OverrideStore = Depends(get_override_store),
):
    try:
        removed = store.remove(Location(payload.lat, payload.lon), payload.date, payload.email)
    except DatabaseConnectionError:
        raise
    except Exception:
        logger.exception("Remove override error")
        return _error(500, "remove-override-failed")
    return RemoveOverrideResponse(removed=removed is not None)


@router.get("/login", include_in_schema=False)
def login_page(settings: Settings = Depends(get_app_settings)):
    return _static_page(settings, "login.html")


@router.get("/register", include_in_schema=False)
def register_page(settings: Settings = Depends(get_app_settings)):
    return _static_page(settings, "register.html")


@router.get("/weather", include_in_schema=False)
def weather_page(settings: Settings = Depends(get_app_settings)):
    return _static_page(settings, "index.html")
