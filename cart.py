import logging
from typing import Dict, List, Optional, Tuple

from bson import ObjectId
from fastapi import APIRouter, Depends

from cakes import check_stock, find_cake, name_lookup
from database import get_db, utcnow
from errors import NotFoundError, ShopError
from images import cake_image_url
from schemas import CartItemIn, CartLineRef, CartLineUpdate, Customization
from security import AuthContext, get_auth

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cart", tags=["cart"])

# customization field -> (collection, label)
CUSTOMIZATION_REFS = {
    "sponge_type_id": ("spongetype", "sponge type"),
    "shape_id": ("shape", "shape"),
    "size_id": ("size", "size"),
    "flavor_id": ("flavor", "flavor"),
}


def line_key(cake_id: str, customization: dict) -> Tuple[str, ...]:
    """Identity of a cart line: the cake plus its whole customization."""
    return (
        cake_id,
        customization.get("sponge_type_id"),
        customization.get("shape_id"),
        customization.get("size_id"),
        customization.get("flavor_id"),
        customization.get("inscription") or "",
    )


def find_line(items: List[dict], cake_id: str, customization: Customization) -> Optional[int]:
    key = line_key(cake_id, customization.model_dump())
    for index, item in enumerate(items):
        if line_key(item["cake_id"], item.get("customization", {})) == key:
            return index
    return None


def validate_customization(db, customization: Customization) -> None:
    for field, (collection, label) in CUSTOMIZATION_REFS.items():
        value = getattr(customization, field)
        if not db[collection].find_one({"_id": ObjectId(value)}, {"_id": 1}):
            raise ShopError(f"Invalid {label} ID: {value}")


def customization_lookups(db, items: List[dict]) -> Dict[str, Dict[str, str]]:
    lookups = {}
    for field, (collection, _) in CUSTOMIZATION_REFS.items():
        lookups[field] = name_lookup(db, collection, [i.get("customization", {}).get(field) for i in items])
    return lookups


def named_customization(customization: dict, lookups: Dict[str, Dict[str, str]]) -> dict:
    out = {}
    for field in CUSTOMIZATION_REFS:
        ref = customization.get(field)
        out[field] = ref
        out[field[:-3]] = lookups[field].get(ref) or "Unknown"
    out["inscription"] = customization.get("inscription") or ""
    return out


def load_cakes(db, cake_ids) -> Dict[str, dict]:
    oids = [ObjectId(i) for i in set(cake_ids) if ObjectId.is_valid(i)]
    if not oids:
        return {}
    return {str(c["_id"]): c for c in db["cake"].find({"_id": {"$in": oids}})}


def cart_view(db, cart: Optional[dict]) -> dict:
    """The cart joined with cake and customization names, ready for display."""
    items = (cart or {}).get("items", [])
    cakes = load_cakes(db, [i["cake_id"] for i in items])
    lookups = customization_lookups(db, items)
    lines = []
    subtotal = 0.0
    for item in items:
        cake = cakes.get(item["cake_id"])
        price = (cake or {}).get("price") or 0
        line_total = round(price * item["quantity"], 2)
        subtotal += line_total
        lines.append({
            "cake_id": item["cake_id"],
            "name": (cake or {}).get("name") or "Unknown Cake",
            "price": price,
            "image": cake_image_url(cake),
            "stock": (cake or {}).get("stock"),
            "quantity": item["quantity"],
            "line_total": line_total,
            "customization": named_customization(item.get("customization", {}), lookups),
        })
    return {
        "items": lines,
        "count": sum(i["quantity"] for i in items),
        "subtotal": round(subtotal, 2),
    }


def get_cart(db, user_id: str) -> Optional[dict]:
    return db["cart"].find_one({"user_id": user_id})


def save_items(db, user_id: str, items: List[dict]) -> dict:
    now = utcnow()
    db["cart"].update_one(
        {"user_id": user_id},
        {"$set": {"items": items, "updated_at": now}, "$setOnInsert": {"created_at": now}},
        upsert=True,
    )
    return get_cart(db, user_id)


def add_item(db, user_id: str, payload: CartItemIn) -> dict:
    cake = find_cake(db, payload.cake_id)
    validate_customization(db, payload.customization)
    check_stock(cake, payload.quantity)

    cart = get_cart(db, user_id)
    items = cart.get("items", []) if cart else []
    index = find_line(items, payload.cake_id, payload.customization)
    if index is not None:
        items[index]["quantity"] += payload.quantity
    else:
        items.append({
            "cake_id": payload.cake_id,
            "quantity": payload.quantity,
            "customization": payload.customization.model_dump(),
        })
    cart = save_items(db, user_id, items)
    logger.info("User %s added %d x cake %s to cart", user_id, payload.quantity, payload.cake_id)
    return cart_view(db, cart)


def cart_count(db, user_id: str) -> int:
    cart = get_cart(db, user_id)
    if not cart:
        return 0
    return sum(item.get("quantity", 0) for item in cart.get("items", []))


def _locate(db, user_id: str, cake_id: str, customization: Customization):
    cart = get_cart(db, user_id)
    if not cart:
        raise NotFoundError("Cart not found")
    items = cart.get("items", [])
    index = find_line(items, cake_id, customization)
    if index is None:
        raise NotFoundError("Cart item not found")
    return items, index


def update_quantity(db, user_id: str, cake_id: str, payload: CartLineUpdate) -> dict:
    cake = find_cake(db, cake_id)
    check_stock(cake, payload.quantity)
    items, index = _locate(db, user_id, cake_id, payload.customization)
    items[index]["quantity"] = payload.quantity
    cart = save_items(db, user_id, items)
    logger.info("User %s set cake %s quantity to %d", user_id, cake_id, payload.quantity)
    return cart_view(db, cart)


def remove_item(db, user_id: str, cake_id: str, payload: CartLineRef) -> dict:
    items, index = _locate(db, user_id, cake_id, payload.customization)
    del items[index]
    cart = save_items(db, user_id, items)
    logger.info("User %s removed cake %s from cart", user_id, cake_id)
    return cart_view(db, cart)


def clear_cart(db, user_id: str) -> None:
    db["cart"].update_one({"user_id": user_id}, {"$set": {"items": [], "updated_at": utcnow()}})


@router.post("")
def add_to_cart(payload: CartItemIn, auth: AuthContext = Depends(get_auth), db=Depends(get_db)):
    return {"message": "Added to cart successfully", "cart": add_item(db, auth.user_id, payload)}


@router.get("")
def read_cart(auth: AuthContext = Depends(get_auth), db=Depends(get_db)):
    view = cart_view(db, get_cart(db, auth.user_id))
    message = "Cart fetched successfully" if view["items"] else "Cart is empty"
    return {"message": message, "cart": view}


@router.get("/count")
def read_cart_count(auth: AuthContext = Depends(get_auth), db=Depends(get_db)):
    return {"message": "Cart count fetched successfully", "count": cart_count(db, auth.user_id)}


@router.put("/{cake_id}")
def update_cart_item(cake_id: str, payload: CartLineUpdate, auth: AuthContext = Depends(get_auth),
                     db=Depends(get_db)):
    return {"message": "Cart updated successfully", "cart": update_quantity(db, auth.user_id, cake_id, payload)}


@router.delete("/{cake_id}")
def remove_cart_item(cake_id: str, payload: CartLineRef, auth: AuthContext = Depends(get_auth),
                     db=Depends(get_db)):
    return {"message": "Item removed from cart", "cart": remove_item(db, auth.user_id, cake_id, payload)}
