"""
Coupon evaluation and admin coupon management.

``evaluate_coupon`` is a pure function of the cart subtotal, the coupon record,
the user and the clock. The preview route only reports the quote; the coupon is
claimed (``used_count``/``used_by``) by order placement alone.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from cart import cart_view, get_cart
from database import get_db, parse_object_id, serialize_doc, to_naive_utc, utcnow
from errors import ConflictError, CouponError, NotFoundError, ShopError
from schemas import ApplyCouponRequest, Coupon, CouponIn
from security import AuthContext, get_auth, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["coupons"])

DEFAULT_VALIDITY = timedelta(days=30)


@dataclass(frozen=True)
class CouponQuote:
    code: str
    discount_amount: float
    total_after_discount: float


def find_active_coupon(db, code: str) -> Optional[dict]:
    return db["coupon"].find_one({"code": code.upper(), "is_active": True})


def evaluate_coupon(subtotal: float, coupon: Optional[dict], user_id: str, now: datetime) -> CouponQuote:
    if not coupon or not coupon.get("is_active", False):
        raise CouponError("Invalid or inactive coupon code")
    now = to_naive_utc(now)
    valid_from = to_naive_utc(coupon.get("valid_from"))
    valid_until = to_naive_utc(coupon.get("valid_until"))
    if valid_from and now < valid_from:
        raise CouponError("Coupon is not yet valid")
    if valid_until and now > valid_until:
        raise CouponError("Coupon has expired")

    usage_limit = coupon.get("usage_limit")
    if usage_limit and coupon.get("used_count", 0) >= usage_limit:
        raise CouponError("Coupon usage limit reached")
    if user_id in (coupon.get("used_by") or []):
        raise CouponError("Coupon already used by this user")

    min_order = coupon.get("min_order_amount") or 0
    if subtotal < min_order:
        raise CouponError(f"Minimum order amount is ₹{min_order:g}")

    value = coupon["discount_value"]
    if coupon["discount_type"] == "percentage":
        discount = subtotal * value / 100
        cap = coupon.get("max_discount_amount")
        if cap and discount > cap:
            discount = cap
    else:
        discount = value
    discount = round(discount, 2)
    return CouponQuote(
        code=coupon["code"],
        discount_amount=discount,
        total_after_discount=round(subtotal - discount, 2),
    )


def claim_coupon(db, coupon: dict, user_id: str) -> bool:
    """Record one use of ``coupon`` by ``user_id``.

    Matches on the ``used_count`` that was read, so a use recorded by a
    concurrent order in between makes this a no-op returning False.
    """
    res = db["coupon"].update_one(
        {"_id": coupon["_id"], "used_count": coupon.get("used_count", 0), "used_by": {"$ne": user_id}},
        {"$inc": {"used_count": 1}, "$push": {"used_by": user_id}},
    )
    return res.modified_count == 1


def unclaim_coupon(db, coupon: dict, user_id: str) -> None:
    db["coupon"].update_one(
        {"_id": coupon["_id"], "used_by": user_id},
        {"$inc": {"used_count": -1}, "$pull": {"used_by": user_id}},
    )


def coupon_document(payload: CouponIn, existing: Optional[dict] = None) -> dict:
    now = utcnow()
    data = payload.model_dump()
    data["valid_from"] = to_naive_utc(data["valid_from"])
    data["valid_until"] = to_naive_utc(data["valid_until"])
    if existing is None:
        data["valid_from"] = data["valid_from"] or now
        data["valid_until"] = data["valid_until"] or now + DEFAULT_VALIDITY
    else:
        # An update without a window keeps the current one
        data["valid_from"] = data["valid_from"] or existing.get("valid_from")
        data["valid_until"] = data["valid_until"] or existing.get("valid_until")
    if data["valid_from"] and data["valid_until"] and data["valid_until"] < data["valid_from"]:
        raise ShopError("valid_until must be after valid_from")
    base = existing or {}
    coupon = Coupon(**data, used_count=base.get("used_count", 0), used_by=base.get("used_by", []))
    return coupon.model_dump()


@router.post("/cart/apply-coupon")
def apply_coupon(payload: ApplyCouponRequest, auth: AuthContext = Depends(get_auth), db=Depends(get_db)):
    cart = get_cart(db, auth.user_id)
    if not cart or not cart.get("items"):
        raise ShopError("Cart is empty")
    subtotal = cart_view(db, cart)["subtotal"]
    quote = evaluate_coupon(subtotal, find_active_coupon(db, payload.coupon_code), auth.user_id, utcnow())
    logger.info("Coupon %s previewed by %s: discount %.2f on %.2f",
                quote.code, auth.user_id, quote.discount_amount, subtotal)
    return {
        "message": "Coupon applied successfully",
        "coupon": {"code": quote.code, "discount_amount": quote.discount_amount},
        "total_after_discount": quote.total_after_discount,
    }


@router.get("/coupons")
def list_coupons(_: AuthContext = Depends(require_admin), db=Depends(get_db)):
    return {"success": True, "data": [serialize_doc(c) for c in db["coupon"].find().sort("code", 1)]}


@router.post("/coupons", status_code=201)
def create_coupon(payload: CouponIn, auth: AuthContext = Depends(require_admin), db=Depends(get_db)):
    if db["coupon"].find_one({"code": payload.code}):
        raise ConflictError("Coupon code already exists.")
    doc = coupon_document(payload)
    doc["created_at"] = doc["updated_at"] = utcnow()
    try:
        inserted = db["coupon"].insert_one(doc).inserted_id
    except DuplicateKeyError:
        raise ConflictError("Coupon code already exists.")
    logger.info("Coupon %s created by %s", payload.code, auth.user_id)
    return {"success": True, "data": serialize_doc(db["coupon"].find_one({"_id": inserted}))}


@router.put("/coupons/{coupon_id}")
def update_coupon(coupon_id: str, payload: CouponIn, _: AuthContext = Depends(require_admin),
                  db=Depends(get_db)):
    oid = parse_object_id(coupon_id, "coupon")
    existing = db["coupon"].find_one({"_id": oid})
    if not existing:
        raise NotFoundError("Coupon not found.")
    if db["coupon"].find_one({"code": payload.code, "_id": {"$ne": oid}}):
        raise ConflictError("Coupon code already exists.")
    doc = coupon_document(payload, existing)
    # Usage is only ever changed by order placement
    doc.pop("used_count")
    doc.pop("used_by")
    doc["updated_at"] = utcnow()
    try:
        coupon = db["coupon"].find_one_and_update({"_id": oid}, {"$set": doc}, return_document=ReturnDocument.AFTER)
    except DuplicateKeyError:
        raise ConflictError("Coupon code already exists.")
    if not coupon:
        raise NotFoundError("Coupon not found.")
    return {"success": True, "data": serialize_doc(coupon)}


@router.delete("/coupons/{coupon_id}")
def delete_coupon(coupon_id: str, _: AuthContext = Depends(require_admin), db=Depends(get_db)):
    oid = parse_object_id(coupon_id, "coupon")
    res = db["coupon"].delete_one({"_id": oid})
    if res.deleted_count == 0:
        raise NotFoundError("Coupon not found.")
    return {"success": True, "message": "Coupon deleted successfully."}
