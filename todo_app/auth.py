import os
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlmodel import select
from sqlalchemy.exc import IntegrityError
from passlib.context import CryptContext
from jose import JWTError, jwt
from pydantic import BaseModel
from .models import Account
from .db import async_session
from . import config
import logging

logger = logging.getLogger(__name__)

# SECRET_KEY must be set in the environment in production. The fallback only
# exists so imports work in tooling; the app lifespan refuses to start with it.
INSECURE_SECRET_FALLBACK = "CHANGE_ME_IN_ENV_FOR_TESTS"
SECRET_KEY = os.getenv("SECRET_KEY", INSECURE_SECRET_FALLBACK)
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24 * config.ACCESS_TOKEN_EXPIRE_DAYS

# prefer a pure-Python, widely-available scheme for tests and portability;
# keep bcrypt as a fallback if available.
pwd_context = CryptContext(schemes=["pbkdf2_sha256", "bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/login", auto_error=False)


class TokenData(BaseModel):
    account_id: Optional[int] = None
    email: Optional[str] = None


def normalize_email(email: str) -> str:
    return (email or '').strip().lower()


def new_salt() -> str:
    return secrets.token_hex(16)


def hash_password(password: str, salt: str) -> str:
    return pwd_context.hash(password + salt)


async def verify_password(plain_password: str, salt: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password + salt, hashed_password)


async def get_account_by_email(email: str) -> Optional[Account]:
    async with async_session() as sess:
        q = await sess.exec(select(Account).where(Account.email == normalize_email(email)))
        return q.first()


async def get_account_by_id(account_id: int) -> Optional[Account]:
    async with async_session() as sess:
        return await sess.get(Account, account_id)


async def create_account(email: str, password: str) -> Optional[Account]:
    """Insert a new account. Returns None when the email is already taken."""
    salt = new_salt()
    account = Account(email=normalize_email(email), password_hash=hash_password(password, salt), salt=salt)
    async with async_session() as sess:
        sess.add(account)
        try:
            await sess.commit()
        except IntegrityError:
            await sess.rollback()
            logger.info('register rejected: email already exists (%s)', account.email)
            return None
        await sess.refresh(account)
    return account


async def authenticate_account(email: str, password: str) -> Optional[Account]:
    account = await get_account_by_email(email)
    if not account:
        return None
    if not await verify_password(password, account.salt, account.password_hash):
        return None
    return account


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    # RFC 7519 recommends NumericDate (seconds since epoch). Encode as int.
    to_encode.update({"exp": int(expire.timestamp())})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def token_for_account(account: Account) -> str:
    return create_access_token({"sub": str(account.id), "email": account.email})


async def get_current_account(token: Optional[str] = Depends(oauth2_scheme)) -> Optional[Account]:
    """Resolve the bearer token to an Account.

    Returns None when no Authorization header was sent at all; raises 401
    when a token is present but invalid, expired, or names a missing account.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid token",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if not token:
        return None
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        sub = payload.get("sub")
        if sub is None:
            raise credentials_exception
        token_data = TokenData(account_id=int(sub), email=payload.get("email"))
    except (JWTError, ValueError):
        raise credentials_exception
    account = await get_account_by_id(token_data.account_id)
    if account is None:
        raise credentials_exception
    return account


async def require_login(account: Optional[Account] = Depends(get_current_account)) -> Account:
    """Dependency that enforces an authenticated account.

    Returns the Account when present, otherwise raises 401 Unauthorized.
    """
    if not account:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return account
