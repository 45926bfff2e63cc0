"""
Order placement.

``place_order`` checks everything first (profile, address, cart, cakes, stock,
coupon, amounts) and only then writes. The writes run as a compensated
sequence: stock is reserved with conditional decrements, the coupon is claimed
with a conditional update, the order is inserted and the cart is cleared. A
failure part way releases what was already taken.
"""
import logging
from collections import OrderedDict
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pymongo import ReturnDocument

from accounts import set_default_address
from cakes import check_stock, release_stock, reserve_stock
from cart import clear_cart, customization_lookups, get_cart, load_cakes, named_customization
from coupons import CouponQuote, claim_coupon, evaluate_coupon, find_active_coupon, unclaim_coupon
from database import get_db, parse_object_id, serialize_doc, utcnow
from errors import CouponError, NotFoundError, ShopError, StockError
from images import cake_image_url
from schemas import Address, AppliedCoupon, Order, OrderItem, OrderStatusUpdate, PlaceOrderRequest, ShippingAddress
from security import AuthContext, get_auth, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["orders"])

ADDRESS_FIELDS = ("street", "city", "state", "zip")
CLAIM_ATTEMPTS = 3


def resolve_address(profile: dict, payload: PlaceOrderRequest) -> dict:
    if payload.shipping_address is not None:
        address = payload.shipping_address.model_dump()
    elif payload.address_id:
        address = next((a for a in profile.get("addresses", []) if a.get("id") == payload.address_id), None)
        if address is None:
            raise ShopError("Address not found")
    else:
        raise ShopError("Address ID or shipping address is required")

    if not all((address.get(f) or "").strip() for f in ADDRESS_FIELDS):
        raise ShopError("Shipping address is missing required fields")
    return address


def remember_address(db, profile: dict, address: dict) -> None:
    """Add an inline shipping address to the address book unless street+zip is already there."""
    addresses = profile.get("addresses", [])
    if any(a.get("street") == address["street"] and a.get("zip") == address["zip"] for a in addresses):
        return
    entry = Address(**{f: address[f] for f in ADDRESS_FIELDS}, is_default=bool(address.get("is_default"))).model_dump()
    addresses.append(entry)
    if entry["is_default"]:
        set_default_address(addresses, entry["id"])
    db["profile"].update_one({"_id": profile["_id"]}, {"$set": {"addresses": addresses, "updated_at": utcnow()}})


def build_items(db, items: List[dict]) -> List[OrderItem]:
    cakes = load_cakes(db, [i["cake_id"] for i in items])
    lookups = customization_lookups(db, items)
    order_items = []
    for item in items:
        cake = cakes.get(item["cake_id"])
        if not cake or not cake.get("name") or cake.get("price") is None:
            raise ShopError(f"Invalid cake in cart: {item['cake_id']}")
        check_stock(cake, item["quantity"])
        order_items.append(OrderItem(
            cake_id=item["cake_id"],
            name=cake["name"],
            price=cake["price"],
            image=cake_image_url(cake),
            quantity=item["quantity"],
            customization=named_customization(item.get("customization", {}), lookups),
        ))
    return order_items


def reserve_all(db, items: List[OrderItem], cakes: dict) -> List[tuple]:
    """Reserve tracked stock for every cake; all or nothing."""
    wanted = OrderedDict()
    for item in items:
        wanted[item.cake_id] = wanted.get(item.cake_id, 0) + item.quantity

    reserved = []
    try:
        for cake_id, quantity in wanted.items():
            if cakes[cake_id].get("stock") is None:
                continue
            if reserve_stock(db, cake_id, quantity) is None:
                current = db["cake"].find_one({"_id": cakes[cake_id]["_id"]}, {"stock": 1}) or {}
                raise StockError(
                    f"Only {current.get('stock', 0)} items available in stock for {cakes[cake_id]['name']}"
                )
            reserved.append((cake_id, quantity))
    except Exception:
        release_all(db, reserved)
        raise
    return reserved


def release_all(db, reserved: List[tuple]) -> None:
    for cake_id, quantity in reserved:
        release_stock(db, cake_id, quantity)


def rollback(db, reserved: List[tuple], claimed_coupon: Optional[dict], user_id: str) -> None:
    if claimed_coupon is not None:
        unclaim_coupon(db, claimed_coupon, user_id)
    release_all(db, reserved)


def claim_with_recheck(db, coupon: dict, subtotal: float, user_id: str, now: datetime) -> CouponQuote:
    """Claim the coupon, re-evaluating it whenever a concurrent use got in first."""
    for _ in range(CLAIM_ATTEMPTS):
        quote = evaluate_coupon(subtotal, coupon, user_id, now)
        if claim_coupon(db, coupon, user_id):
            return quote
        coupon = db["coupon"].find_one({"_id": coupon["_id"], "is_active": True})
    raise CouponError("Coupon usage limit reached")


def place_order(db, user_id: str, payload: PlaceOrderRequest, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()

    profile = db["profile"].find_one({"user_id": user_id})
    if not profile:
        raise ShopError("User profile not found. Please create a profile.")
    address = resolve_address(profile, payload)

    cart = get_cart(db, user_id)
    if not cart or not cart.get("items"):
        raise ShopError("Cart is empty")
    items = build_items(db, cart["items"])

    subtotal = round(sum(i.price * i.quantity for i in items), 2)
    if subtotal <= 0:
        raise ShopError("Cart total is invalid")

    coupon = None
    quote = None
    if payload.coupon_code:
        coupon = find_active_coupon(db, payload.coupon_code)
        quote = evaluate_coupon(subtotal, coupon, user_id, now)
    discount = quote.discount_amount if quote else 0
    final_amount = round(subtotal - discount, 2)
    if final_amount < 0:
        raise ShopError("Final amount cannot be negative")

    # Everything checked; from here on each write is undone if a later one fails
    cakes = load_cakes(db, [i.cake_id for i in items])
    reserved = reserve_all(db, items, cakes)
    claimed = False
    try:
        if coupon is not None:
            quote = claim_with_recheck(db, coupon, subtotal, user_id, now)
            claimed = True
            final_amount = round(subtotal - quote.discount_amount, 2)
            if final_amount < 0:
                raise ShopError("Final amount cannot be negative")
        order = Order(
            user_id=user_id,
            items=items,
            total_amount=subtotal,
            final_amount=final_amount,
            coupon=AppliedCoupon(code=quote.code, discount_amount=quote.discount_amount) if quote else None,
            shipping_address=ShippingAddress(**{f: address[f] for f in ADDRESS_FIELDS},
                                             is_default=bool(address.get("is_default"))),
        )
        doc = {**order.model_dump(), "created_at": now}
        doc["_id"] = db["order"].insert_one(doc).inserted_id
    except ShopError as exc:
        rollback(db, reserved, coupon if claimed else None, user_id)
        logger.info("Order placement for user %s rejected: %s", user_id, exc.message)
        raise
    except Exception:
        rollback(db, reserved, coupon if claimed else None, user_id)
        logger.exception("Order placement for user %s rolled back", user_id)
        raise

    # The order is stored; nothing below may turn it into an error response
    clear_cart(db, user_id)
    if payload.shipping_address is not None:
        try:
            remember_address(db, profile, address)
        except Exception:
            logger.exception("Could not save shipping address for user %s", user_id)
    logger.info("Order %s placed by %s: total %.2f, final %.2f", doc["_id"], user_id, subtotal, final_amount)
    return doc


def order_summary(order: dict) -> dict:
    coupon = order.get("coupon") or {}
    address = order.get("shipping_address") or {}
    return {
        "id": str(order["_id"]),
        "date": order.get("created_at"),
        "status": order.get("status", "pending"),
        "total": order.get("total_amount", 0),
        "final_total": order.get("final_amount", order.get("total_amount", 0)),
        "coupon_code": coupon.get("code", ""),
        "discount_amount": coupon.get("discount_amount", 0),
        "shipping_address": {f: address.get(f, "N/A") for f in ADDRESS_FIELDS} | {
            "is_default": address.get("is_default", False)
        },
        "items": [
            {
                "cake_id": item.get("cake_id", ""),
                "name": item.get("name", "Unknown Cake"),
                "price": item.get("price", 0),
                "image": item.get("image"),
                "quantity": item.get("quantity", 0),
                "customization": item.get("customization", {}),
            }
            for item in order.get("items", [])
        ],
    }


@router.post("/orders", status_code=201)
def create_order(payload: PlaceOrderRequest, auth: AuthContext = Depends(get_auth), db=Depends(get_db)):
    order = place_order(db, auth.user_id, payload)
    return {"message": "Order placed successfully", "data": serialize_doc(order)}


@router.get("/orders")
def list_orders(auth: AuthContext = Depends(get_auth), db=Depends(get_db)):
    cursor = db["order"].find({"user_id": auth.user_id}).sort("created_at", -1)
    return [order_summary(o) for o in cursor]


@router.get("/admin/orders")
def list_all_orders(_: AuthContext = Depends(require_admin), db=Depends(get_db)):
    cursor = db["order"].find().sort("created_at", -1)
    return [{**order_summary(o), "user_id": o.get("user_id")} for o in cursor]


@router.put("/admin/orders/{order_id}/status")
def update_order_status(order_id: str, payload: OrderStatusUpdate, auth: AuthContext = Depends(require_admin),
                        db=Depends(get_db)):
    oid = parse_object_id(order_id, "order")
    order = db["order"].find_one_and_update(
        {"_id": oid},
        {"$set": {"status": payload.status, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if not order:
        raise NotFoundError("Order not found")
    logger.info("Order %s set to %s by %s", order_id, payload.status, auth.user_id)
    return {"message": "Order status updated", "data": order_summary(order)}
