"""FastAPI application for the events backend entitlement API."""
from __future__ import annotations

import logging
import math
import os
from datetime import datetime, timedelta
from typing import Optional

import psycopg2
from dotenv import load_dotenv
from fastapi import Cookie, FastAPI, HTTPException, status
from jose import JWTError, jwt
from pydantic import BaseModel

from events_backend import app_context

load_dotenv()


def _parse_connect_timeout(raw_value: str) -> int:
    try:
        timeout = float(raw_value)
    except ValueError as exc:
        raise ValueError("DB_CONNECT_TIMEOUT must be a number") from exc
    if timeout < 0:
        raise ValueError("DB_CONNECT_TIMEOUT must be non-negative")
    return int(math.ceil(timeout))


DB_CFG = dict(
    host=os.getenv("DB_HOST", "127.0.0.1"),
    port=int(os.getenv("DB_PORT", "5432")),
    dbname=os.getenv("DB_NAME", "events_db"),
    user=os.getenv("DB_USER", "events_user"),
    password=os.getenv("DB_PASSWORD", "events_pass"),
    connect_timeout=_parse_connect_timeout(os.getenv("DB_CONNECT_TIMEOUT", "5")),
)

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-change-me")
JWT_ALGORITHM = "HS256"
JWT_EXP_MINUTES = int(os.getenv("JWT_EXP_MINUTES", str(60 * 24 * 7)))  # default: 7 days
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")

logger = logging.getLogger("events_backend")


class CurrentUser(BaseModel):
    id: str


def get_conn():
    return psycopg2.connect(**DB_CFG)


def create_access_token(*, subject: str, expires_delta: Optional[timedelta] = None) -> str:
    payload = {"sub": subject}
    if expires_delta is None:
        expires_delta = timedelta(minutes=JWT_EXP_MINUTES)
    payload["exp"] = datetime.utcnow() + expires_delta
    return jwt.encode(payload, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def resolve_user_from_session_token(session_token: str) -> Optional[CurrentUser]:
    try:
        payload = jwt.decode(session_token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError:
        return None
    subject = payload.get("sub")
    if not subject:
        return None
    return CurrentUser(id=str(subject))


def get_current_user(session_token: Optional[str] = Cookie(None, alias=SESSION_COOKIE_NAME)) -> CurrentUser:
    if not session_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    user = resolve_user_from_session_token(session_token)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return user


app_context.configure(get_conn=get_conn, get_current_user=get_current_user)

from events_backend.app.routes.subscriptions import router as subscriptions_router  # noqa: E402
from events_backend.app.services.entitlements import get_entitlement_config, get_plan_catalog  # noqa: E402
from events_backend.jobs import (  # noqa: E402
    get_job_metrics,
    shutdown_entitlement_scheduler,
    start_entitlement_scheduler,
)

app = FastAPI(title="Events Backend API")

app.include_router(subscriptions_router)


@app.on_event("startup")
def setup_entitlements() -> None:
    config = get_entitlement_config()
    if os.getenv("ENTITLEMENT_SEED_PLANS", "1").lower() in {"1", "true", "yes"}:
        get_plan_catalog().seed_default_plans(currency=config.default_currency)
    if config.scheduler_enabled:
        start_entitlement_scheduler()
        logger.info("Entitlement jobs scheduled", extra={"timezone": config.timezone_name})


@app.on_event("shutdown")
def teardown_entitlements() -> None:
    shutdown_entitlement_scheduler()


@app.get("/api/healthz")
def healthz():
    return {"ok": True}


@app.get("/api/metrics/entitlement-jobs")
def entitlement_job_metrics():
    return get_job_metrics()
