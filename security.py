from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from bson import ObjectId
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext

from config import Config
from database import get_db

security = HTTPBearer(auto_error=False)
password_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")


@dataclass(frozen=True)
class AuthContext:
    """Who is making the request. Handed to handlers by ``get_auth``."""
    user_id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


@dataclass(frozen=True)
class AuthResult:
    user_id: str
    role: str
    token: str


def hash_password(password: str) -> str:
    return password_ctx.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return password_ctx.verify(password, hashed)


def create_token(user: dict) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user["_id"]),
        "role": user.get("role", "user"),
        "iat": now,
        "exp": now + timedelta(minutes=Config.JWT_EXPIRES_MIN),
    }
    return jwt.encode(payload, Config.JWT_SECRET, algorithm="HS256")


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, Config.JWT_SECRET, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def verify(db, token: str) -> AuthContext:
    """Resolve a bearer token to the caller's identity, or fail with 401."""
    payload = decode_token(token)
    uid = payload.get("sub")
    if not uid or not ObjectId.is_valid(uid):
        raise HTTPException(status_code=401, detail="Invalid token")
    user = db["user"].find_one({"_id": ObjectId(uid)}, {"role": 1})
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    # The stored role wins so a demotion takes effect before the token expires
    return AuthContext(user_id=uid, role=user.get("role", "user"))


def authenticate(db, email: str, password: str) -> AuthResult:
    user = db["user"].find_one({"email": email.lower()})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if not verify_password(password, user.get("hashed_password", "")):
        raise HTTPException(status_code=400, detail="Invalid password")
    return AuthResult(user_id=str(user["_id"]), role=user.get("role", "user"), token=create_token(user))


def get_auth(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
             db=Depends(get_db)) -> AuthContext:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Not authenticated")
    return verify(db, credentials.credentials)


def require_admin(auth: AuthContext = Depends(get_auth)) -> AuthContext:
    if not auth.is_admin:
        raise HTTPException(status_code=403, detail="Access denied. Admin only.")
    return auth
