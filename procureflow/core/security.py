"""
Password hashing and bearer tokens for both principal kinds.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi.security import HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from procureflow.core.config import settings
from procureflow.core.errors import AuthenticationError

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)

# Missing credentials are reported by the principal dependency, not by FastAPI
bearer_scheme = HTTPBearer(auto_error=False)

# Claims every token must carry; role and org_id are added for organization users
REQUIRED_CLAIMS = ("sub", "kind")


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(claims: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Sign principal claims into a JWT with iat/exp set."""
    missing = [c for c in REQUIRED_CLAIMS if not claims.get(c)]
    if missing:
        raise ValueError(f"Token claims missing: {', '.join(missing)}")

    issued_at = datetime.now(timezone.utc)
    lifetime = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    payload = {k: v for k, v in claims.items() if v is not None}
    payload.update({"iat": issued_at, "exp": issued_at + lifetime})
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    """Verify signature and expiry; AuthenticationError otherwise."""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except ExpiredSignatureError:
        raise AuthenticationError("Token has expired")
    except JWTError:
        raise AuthenticationError("Invalid token")
