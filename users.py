import logging
from datetime import datetime, timezone

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from auth import Caller, create_access_token, hash_password, verify_password
from database import create_document, isoformat, to_object_id
from errors import BadRequest, NotFound, PermissionDenied, ValidationFailed, field_error
from schemas import LoginRequest, ProfileUpdate, RegisterRequest

logger = logging.getLogger(__name__)


def serialize_user(doc) -> dict:
    return {
        "id": str(doc["_id"]),
        "name": doc.get("name"),
        "email": doc.get("email"),
        "phone": doc.get("phone"),
        "role": doc.get("role", "guest"),
        "bio": doc.get("bio"),
        "avatarUrl": doc.get("avatar_url"),
        "isVerified": bool(doc.get("is_verified", False)),
        "joinedAt": isoformat(doc.get("joined_at")),
    }


def serialize_public_user(doc) -> dict:
    return {
        "id": str(doc["_id"]),
        "name": doc.get("name"),
        "role": doc.get("role", "guest"),
        "bio": doc.get("bio"),
        "avatarUrl": doc.get("avatar_url"),
        "isVerified": bool(doc.get("is_verified", False)),
        "joinedAt": isoformat(doc.get("joined_at")),
    }


def _token_response(doc) -> dict:
    token = create_access_token({"sub": str(doc["_id"]), "role": doc.get("role", "guest")})
    return {"accessToken": token, "tokenType": "bearer", "user": serialize_user(doc)}


def register_user(db: Database, payload: RegisterRequest) -> dict:
    email = payload.email.lower()
    if db["user"].find_one({"email": email}):
        raise BadRequest("Email already registered")
    now = datetime.now(timezone.utc)
    user_doc = {
        "name": payload.name.strip(),
        "email": email,
        "phone": payload.phone,
        "role": payload.role.value,
        "bio": payload.bio,
        "avatar_url": None,
        "password_hash": hash_password(payload.password),
        "is_verified": False,
        "is_active": True,
        "joined_at": now,
    }
    try:
        create_document(db, "user", user_doc)
    except DuplicateKeyError:
        # lost a race with a concurrent registration of the same email
        raise BadRequest("Email already registered")
    logger.info("Registered %s user %s", user_doc["role"], user_doc["_id"])
    return _token_response(user_doc)


def login_user(db: Database, payload: LoginRequest) -> dict:
    user = db["user"].find_one({"email": payload.email.lower()})
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        raise BadRequest("Invalid email or password")
    if not user.get("is_active", True):
        raise PermissionDenied("Account disabled")
    return _token_response(user)


def get_me(db: Database, caller: Caller) -> dict:
    user = db["user"].find_one({"_id": caller.object_id})
    if not user:
        raise NotFound("User not found")
    return serialize_user(user)


def update_profile(db: Database, caller: Caller, payload: ProfileUpdate) -> dict:
    changes = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
    if not changes:
        raise ValidationFailed([field_error("body", "No valid fields")])
    changes["updated_at"] = datetime.now(timezone.utc)
    db["user"].update_one({"_id": caller.object_id}, {"$set": changes})
    return get_me(db, caller)


def get_public_profile(db: Database, user_id: str) -> dict:
    user = db["user"].find_one({"_id": to_object_id(user_id, "user")})
    if not user or not user.get("is_active", True):
        raise NotFound("User not found")
    return serialize_public_user(user)
