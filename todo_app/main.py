from contextlib import asynccontextmanager
from typing import Optional
import logging
import sys

from fastapi import FastAPI, Depends, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .db import init_db
from .models import Account
from .auth import (
    INSECURE_SECRET_FALLBACK,
    authenticate_account,
    create_account,
    normalize_email,
    require_login,
    token_for_account,
)
from .todos_api import router as todos_router
from .utils import iso_utc
from . import config

logger = logging.getLogger(__name__)
# Ensure INFO-level messages appear on the server console when no handlers
# are configured (development and test runs).
_pkg_logger = logging.getLogger('todo_app')
if not _pkg_logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter('%(asctime)s %(levelname)s:%(name)s: %(message)s')
    handler.setFormatter(formatter)
    _pkg_logger.addHandler(handler)
_pkg_logger.setLevel(getattr(logging, config.LOG_LEVEL, logging.INFO))


@asynccontextmanager
async def lifespan(app: FastAPI):
    # startup checks
    from .auth import SECRET_KEY as _SECRET_KEY
    # The application must not start without a proper secret in the
    # environment; tokens signed with the fallback are forgeable.
    if not _SECRET_KEY or _SECRET_KEY == INSECURE_SECRET_FALLBACK:
        raise RuntimeError("SECRET_KEY not set or insecure fallback in use; set the SECRET_KEY environment variable before starting the server")

    await init_db()
    from . import db as _dbmod
    logger.info('starting server using DATABASE_URL=%s', _dbmod.DATABASE_URL)
    yield


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.FRONTEND_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def no_cache_api(request: Request, call_next):
    """Set no-cache headers on every /api response so browsers, service
    workers and proxies never serve a stale todo list."""
    resp = await call_next(request)
    try:
        path = request.url.path or ''
        if path.startswith('/api'):
            resp.headers['Cache-Control'] = 'no-cache, no-store, must-revalidate'
            resp.headers['Pragma'] = 'no-cache'
            resp.headers['Expires'] = '0'
    except Exception:
        # don't let header setting break request handling
        logger.exception('error while applying no-cache middleware')
    return resp


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    # Clients treat any 400 as "fix your input"; FastAPI's default is 422.
    errors = exc.errors()
    detail = 'invalid request'
    if errors:
        first = errors[0]
        loc = '.'.join(str(p) for p in first.get('loc', ()) if p != 'body')
        msg = first.get('msg') or detail
        detail = f'{loc}: {msg}' if loc else msg
    logger.info('validation error on %s %s: %s', request.method, request.url.path, detail)
    return JSONResponse(status_code=400, content={'detail': detail})


class Credentials(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


def _require_credentials(req: Credentials) -> tuple[str, str]:
    email = normalize_email(req.email or '')
    password = req.password or ''
    if not email or not password:
        raise HTTPException(status_code=400, detail='Email and password required')
    return email, password


def _session_payload(account: Account) -> dict:
    return {
        'token': token_for_account(account),
        'user': {'id': account.id, 'email': account.email},
    }


@app.post('/api/register')
async def register(req: Credentials):
    email, password = _require_credentials(req)
    account = await create_account(email, password)
    if account is None:
        raise HTTPException(status_code=409, detail='User already exists')
    logger.info('registered account id=%s', account.id)
    return _session_payload(account)


@app.post('/api/login')
async def login(req: Credentials):
    email, password = _require_credentials(req)
    account = await authenticate_account(email, password)
    if not account:
        raise HTTPException(status_code=401, detail='Invalid credentials')
    return _session_payload(account)


@app.post('/api/logout')
async def logout():
    # Tokens are stateless; the client discards its copy.
    return {'message': 'Logged out'}


@app.get('/api/me')
async def me(current_account: Account = Depends(require_login)):
    return {
        'id': current_account.id,
        'email': current_account.email,
        'created_at': iso_utc(current_account.created_at),
    }


app.include_router(todos_router)
