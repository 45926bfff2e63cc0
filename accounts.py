import logging
from typing import List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import get_db, parse_object_id, serialize_doc, utcnow
from errors import ConflictError, NotFoundError
from schemas import (
    Address,
    AddressIn,
    AddressUpdate,
    LoginRequest,
    PasswordChange,
    Profile,
    ProfileUpdate,
    RoleUpdate,
    SignupRequest,
    User,
)
from security import (
    AuthContext,
    authenticate,
    create_token,
    get_auth,
    hash_password,
    require_admin,
    verify_password,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["accounts"])


def get_profile(db, user_id: str) -> dict:
    profile = db["profile"].find_one({"user_id": user_id})
    if not profile:
        raise NotFoundError("Profile not found")
    return profile


def profile_out(profile: dict) -> dict:
    return serialize_doc(profile)


def user_summary(user: dict, profile: Optional[dict] = None) -> dict:
    return {
        "id": str(user["_id"]),
        "name": profile.get("name") if profile else "N/A",
        "email": user.get("email"),
        "phone": profile.get("phone") if profile else "N/A",
        "role": user.get("role", "user"),
    }


def set_default_address(addresses: List[dict], address_id: str) -> None:
    for a in addresses:
        a["is_default"] = a.get("id") == address_id


def _save_addresses(db, user_id: str, addresses: List[dict]) -> dict:
    return db["profile"].find_one_and_update(
        {"user_id": user_id},
        {"$set": {"addresses": addresses, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )


# Auth
@router.post("/signup", status_code=201)
def signup(payload: SignupRequest, db=Depends(get_db)):
    email = payload.email.lower()
    if db["user"].find_one({"email": email}):
        raise ConflictError("User already exists")
    user = User(email=email, hashed_password=hash_password(payload.password), role="user")
    now = utcnow()
    try:
        inserted_id = db["user"].insert_one({**user.model_dump(), "created_at": now}).inserted_id
    except DuplicateKeyError:
        raise ConflictError("User already exists")
    profile = Profile(user_id=str(inserted_id), name=payload.name, phone=payload.phone, email=email)
    db["profile"].insert_one({**profile.model_dump(), "created_at": now, "updated_at": now})
    user_doc = db["user"].find_one({"_id": inserted_id})
    logger.info("User signed up: %s", inserted_id)
    return {
        "message": "Signup successful",
        "token": create_token(user_doc),
        "user": user_summary(user_doc, profile.model_dump()),
    }


@router.post("/login")
def login(payload: LoginRequest, db=Depends(get_db)):
    result = authenticate(db, payload.email, payload.password)
    profile = db["profile"].find_one({"user_id": result.user_id})
    if not profile:
        raise NotFoundError("Profile not found. Please contact support.")
    user = db["user"].find_one({"_id": ObjectId(result.user_id)})
    return {"message": "Login successful", "token": result.token, "user": user_summary(user, profile)}


# Profile
@router.get("/profile")
def read_profile(auth: AuthContext = Depends(get_auth), db=Depends(get_db)):
    return {"message": "Profile fetched successfully", "data": profile_out(get_profile(db, auth.user_id))}


@router.put("/profile")
def update_profile(payload: ProfileUpdate, auth: AuthContext = Depends(get_auth), db=Depends(get_db)):
    get_profile(db, auth.user_id)
    user = db["user"].find_one({"_id": ObjectId(auth.user_id)})
    if not user:
        raise NotFoundError("User not found")

    update = {}
    if payload.email and payload.email.lower() != user["email"]:
        email = payload.email.lower()
        if db["user"].find_one({"email": email}):
            raise ConflictError("Email already in use")
        db["user"].update_one({"_id": user["_id"]}, {"$set": {"email": email}})
        update["email"] = email
    if payload.name:
        update["name"] = payload.name.strip()
    if payload.phone:
        update["phone"] = payload.phone
    if payload.preferences is not None:
        update["preferences"] = payload.preferences
    update["updated_at"] = utcnow()
    profile = db["profile"].find_one_and_update(
        {"user_id": auth.user_id}, {"$set": update}, return_document=ReturnDocument.AFTER
    )
    return {"message": "Profile updated successfully", "data": profile_out(profile)}


@router.put("/profile/password")
def change_password(payload: PasswordChange, auth: AuthContext = Depends(get_auth), db=Depends(get_db)):
    user = db["user"].find_one({"_id": ObjectId(auth.user_id)})
    if not user:
        raise NotFoundError("User not found")
    if not verify_password(payload.current_password, user.get("hashed_password", "")):
        raise HTTPException(status_code=400, detail="Current password is incorrect")
    db["user"].update_one(
        {"_id": user["_id"]}, {"$set": {"hashed_password": hash_password(payload.new_password)}}
    )
    return {"message": "Password updated successfully", "data": profile_out(get_profile(db, auth.user_id))}


@router.post("/profile/address")
def add_address(payload: AddressIn, auth: AuthContext = Depends(get_auth), db=Depends(get_db)):
    profile = get_profile(db, auth.user_id)
    addresses = profile.get("addresses", [])
    address = Address(**payload.model_dump()).model_dump()
    addresses.append(address)
    if address["is_default"]:
        set_default_address(addresses, address["id"])
    profile = _save_addresses(db, auth.user_id, addresses)
    return {"message": "Address added successfully", "data": profile_out(profile)}


@router.put("/profile/address/{address_id}")
def update_address(address_id: str, payload: AddressUpdate, auth: AuthContext = Depends(get_auth),
                   db=Depends(get_db)):
    profile = get_profile(db, auth.user_id)
    addresses = profile.get("addresses", [])
    address = next((a for a in addresses if a.get("id") == address_id), None)
    if address is None:
        raise NotFoundError("Address not found")
    for field in ("street", "city", "state", "zip"):
        value = getattr(payload, field)
        if value:
            address[field] = value
    if payload.is_default:
        set_default_address(addresses, address_id)
    profile = _save_addresses(db, auth.user_id, addresses)
    return {"message": "Address updated successfully", "data": profile_out(profile)}


@router.delete("/profile/address/{address_id}")
def delete_address(address_id: str, auth: AuthContext = Depends(get_auth), db=Depends(get_db)):
    profile = get_profile(db, auth.user_id)
    addresses = profile.get("addresses", [])
    remaining = [a for a in addresses if a.get("id") != address_id]
    if len(remaining) == len(addresses):
        raise NotFoundError("Address not found")
    profile = _save_addresses(db, auth.user_id, remaining)
    return {"message": "Address deleted successfully", "data": profile_out(profile)}


# Users (admin)
@router.get("/users")
def list_users(_: AuthContext = Depends(require_admin), db=Depends(get_db)):
    profiles = {p["user_id"]: p for p in db["profile"].find()}
    users = [user_summary(u, profiles.get(str(u["_id"]))) for u in db["user"].find()]
    return {"message": "Users fetched successfully", "users": users}


@router.put("/users/{user_id}/role")
def update_role(user_id: str, payload: RoleUpdate, _: AuthContext = Depends(require_admin),
                db=Depends(get_db)):
    oid = parse_object_id(user_id, "user")
    user = db["user"].find_one_and_update(
        {"_id": oid}, {"$set": {"role": payload.role}}, return_document=ReturnDocument.AFTER
    )
    if not user:
        raise NotFoundError("User not found")
    logger.info("Role of user %s set to %s", user_id, payload.role)
    profile = db["profile"].find_one({"user_id": user_id})
    return {"message": "Role updated successfully", "user": user_summary(user, profile)}


@router.delete("/users/{user_id}")
def delete_user(user_id: str, _: AuthContext = Depends(require_admin), db=Depends(get_db)):
    oid = parse_object_id(user_id, "user")
    res = db["user"].delete_one({"_id": oid})
    if res.deleted_count == 0:
        raise NotFoundError("User not found")
    db["profile"].delete_one({"user_id": user_id})
    db["cart"].delete_one({"user_id": user_id})
    logger.info("Deleted user %s with profile and cart", user_id)
    return {"message": "User and profile deleted successfully"}
