"""Bearer tokens. Issued upstream in production; issuing here serves tooling and tests."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import jwt

from fee_ledger.core.config import settings


def create_access_token(
    *, subject: Dict[str, Any], expires_minutes: Optional[int] = None
) -> str:
    """Sign ``subject`` claims (sub, role, permissions, student_ids) with an expiry."""
    lifetime = timedelta(
        minutes=settings.access_token_expire_minutes if expires_minutes is None else expires_minutes
    )
    claims = dict(subject, exp=datetime.now(timezone.utc) + lifetime)
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Verify signature and expiry. Raises ``jose.JWTError`` on any failure."""
    return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
