import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from bson import ObjectId
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database

from database import get_db
from errors import AuthenticationFailed, PermissionDenied

# Security
SECRET_KEY = os.getenv("JWT_SECRET", "change-this-secret")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24)))
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)

MISSING_TOKEN = "No token, authorization denied"
INVALID_TOKEN = "Token is not valid"
EXPIRED_TOKEN = "Token expired"


@dataclass(frozen=True)
class Caller:
    """Identity of the authenticated user making a request."""
    id: str
    role: str
    name: str = ""
    email: str = ""

    @property
    def object_id(self) -> ObjectId:
        return ObjectId(self.id)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> str:
    """Return the user id carried by ``token``.

    Raises AuthenticationFailed with a message telling expired tokens
    apart from malformed or forged ones.
    """
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except ExpiredSignatureError:
        raise AuthenticationFailed(EXPIRED_TOKEN)
    except JWTError:
        raise AuthenticationFailed(INVALID_TOKEN)
    user_id = payload.get("sub")
    if not user_id or not ObjectId.is_valid(user_id):
        raise AuthenticationFailed(INVALID_TOKEN)
    return user_id


# Dependency: get current user
def get_current_user(token: Optional[str] = Depends(oauth2_scheme), db: Database = Depends(get_db)) -> Caller:
    if not token:
        raise AuthenticationFailed(MISSING_TOKEN)
    user_id = decode_access_token(token)
    user = db["user"].find_one({"_id": ObjectId(user_id)})
    if not user or not user.get("is_active", True):
        raise AuthenticationFailed(INVALID_TOKEN)
    return Caller(id=user_id, role=user.get("role", "guest"), name=user.get("name", ""), email=user.get("email", ""))


# Role guard
def require_role(*roles):
    def _guard(caller: Caller = Depends(get_current_user)) -> Caller:
        if caller.role not in roles:
            raise PermissionDenied("Forbidden: requires role " + " or ".join(roles))
        return caller
    return _guard
