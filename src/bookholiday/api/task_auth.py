"""Authentication for worker task endpoints.

Sweep and sync endpoints are triggered by Cloud Scheduler with an OIDC
token signed by Google. In local dev (TASKS_OIDC_AUDIENCE set to the
local audience) an X-Internal-Task-Secret header is accepted instead.
Fail closed: no audience configured means no request is accepted.
"""

from __future__ import annotations

import hmac
import os

from fastapi import HTTPException, Request
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

from bookholiday.observability.logging import get_logger
from bookholiday.observability.redaction import safe_log_context

logger = get_logger(__name__)

LOCAL_DEV_AUDIENCE = "bookholiday-tasks-local"
INTERNAL_SECRET_HEADER = "X-Internal-Task-Secret"


def _bearer_token(request: Request) -> str | None:
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def _internal_secret_ok(request: Request) -> bool:
    expected = os.environ.get("INTERNAL_TASK_SECRET", "")
    provided = request.headers.get(INTERNAL_SECRET_HEADER, "")
    return bool(expected) and hmac.compare_digest(expected, provided)


def verify_oidc_token(token: str, audience: str) -> bool:
    """Verify a Google-signed OIDC token for the given audience.

    If TASKS_OIDC_SERVICE_ACCOUNT is set, the token email must match it.
    """
    try:
        claims = id_token.verify_oauth2_token(token, google_requests.Request(), audience=audience)
    except ValueError as e:
        logger.warning(
            "task OIDC verification failed",
            extra={"extra_fields": safe_log_context(error=str(e), audience=audience)},
        )
        return False

    expected_email = os.environ.get("TASKS_OIDC_SERVICE_ACCOUNT")
    if expected_email and claims.get("email") != expected_email:
        logger.warning(
            "task OIDC service account mismatch",
            extra={"extra_fields": safe_log_context(expected_email=expected_email)},
        )
        return False
    return True


def verify_task_auth(request: Request) -> bool:
    """True if the request carries valid task credentials."""
    audience = os.environ.get("TASKS_OIDC_AUDIENCE", "")
    if not audience:
        logger.error(
            "TASKS_OIDC_AUDIENCE not configured - fail closed",
            extra={"extra_fields": safe_log_context(reason="missing_audience_env")},
        )
        return False

    if audience == LOCAL_DEV_AUDIENCE and _internal_secret_ok(request):
        return True

    token = _bearer_token(request)
    if token is None:
        logger.warning(
            "task auth failed: missing Bearer token",
            extra={"extra_fields": safe_log_context(reason="missing_bearer_token")},
        )
        return False
    return verify_oidc_token(token, audience)


def require_task_auth(request: Request) -> None:
    """FastAPI dependency: 401 unless verify_task_auth passes."""
    if not verify_task_auth(request):
        raise HTTPException(status_code=401, detail="Unauthorized")
