"""
API routes - combined router from all domain modules.

Every sub-router registers its paths under API_PREFIX and imports the shared
limiter and auth responses from this package.
"""

import os

from fastapi import APIRouter, HTTPException
from slowapi import Limiter
from slowapi.util import get_remote_address

API_PREFIX = "/api/v1"

# ---------------------------------------------------------------------------
# Rate limiting (signup and login only)
# ---------------------------------------------------------------------------
IS_TEST_ENV = os.getenv("ENV", "").lower() == "test"
AUTH_RATE_LIMIT = os.getenv("AUTH_RATE_LIMIT", "10/minute")

limiter = Limiter(key_func=get_remote_address)

if IS_TEST_ENV:
    def _skip_limit(*args, **kwargs):
        """Test runs hit the auth endpoints far more often than any limit allows."""
        return lambda func: func

    limiter.limit = _skip_limit

INVALID_CREDENTIALS_RESPONSE = HTTPException(
    status_code=401, detail="Email or password is incorrect"
)

# ---------------------------------------------------------------------------
# Sub-routers, imported after the shared objects above exist
# ---------------------------------------------------------------------------
from backend.api.routes import (  # noqa: E402
    auth,
    championships,
    coaches,
    events,
    federations,
    matches,
    organizations,
    players,
    seasons,
    training,
)

router = APIRouter()
for _module in (
    auth,
    organizations,
    players,
    coaches,
    training,
    federations,
    seasons,
    championships,
    events,
    matches,
):
    router.include_router(_module.router)
