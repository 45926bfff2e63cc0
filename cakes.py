import logging
from typing import Dict, Iterable, List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, Query
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import get_db, parse_object_id, serialize_doc, utcnow
from errors import ConflictError, NotFoundError, ShopError, StockError
from images import cake_image_url
from schemas import Cake, StockUpdate
from security import AuthContext, get_auth, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["cakes"])

# field -> (collection, error message when a referenced id does not exist)
SINGLE_REFS = {
    "category_id": ("category", "Category does not exist."),
    "sponge_type_id": ("spongetype", "Sponge type does not exist."),
    "shape_id": ("shape", "Shape does not exist."),
    "availability_id": ("availability", "Availability does not exist."),
}
MULTI_REFS = {
    "image_ids": ("image", "One or more image IDs are invalid."),
    "tag_ids": ("tag", "One or more tag IDs are invalid."),
    "flavor_ids": ("flavor", "One or more flavor IDs are invalid."),
    "size_ids": ("size", "One or more size IDs are invalid."),
    "dietary_preference_ids": ("dietarypreference", "One or more dietary preference IDs are invalid."),
    "delivery_option_ids": ("deliveryoption", "One or more delivery option IDs are invalid."),
}


def existing_ids(db, collection: str, ids: Iterable[str]) -> set:
    oids = [ObjectId(i) for i in set(ids) if ObjectId.is_valid(i)]
    if not oids:
        return set()
    return {str(d["_id"]) for d in db[collection].find({"_id": {"$in": oids}}, {"_id": 1})}


def name_lookup(db, collection: str, ids: Iterable[str]) -> Dict[str, str]:
    oids = [ObjectId(i) for i in set(ids) if i and ObjectId.is_valid(i)]
    if not oids:
        return {}
    return {str(d["_id"]): d.get("name") for d in db[collection].find({"_id": {"$in": oids}}, {"name": 1})}


def validate_references(db, payload: Cake) -> None:
    for field, (collection, message) in SINGLE_REFS.items():
        value = getattr(payload, field)
        if value not in existing_ids(db, collection, [value]):
            raise ShopError(message)
    for field, (collection, message) in MULTI_REFS.items():
        values = getattr(payload, field)
        if values and len(existing_ids(db, collection, values)) != len(set(values)):
            raise ShopError(message)


def cake_views(db, cakes: List[dict]) -> List[dict]:
    """Serialize cakes with every reference resolved to ``{id, name}``."""
    lookups = {}
    for field, (collection, _) in {**SINGLE_REFS, **MULTI_REFS}.items():
        if field == "image_ids":
            continue
        ids = []
        for cake in cakes:
            value = cake.get(field)
            ids.extend(value if isinstance(value, list) else [value])
        lookups[field] = name_lookup(db, collection, ids)

    views = []
    for cake in cakes:
        view = serialize_doc(cake)
        for field, names in lookups.items():
            value = cake.get(field)
            if isinstance(value, list):
                view[field[:-4] + "s"] = [{"id": v, "name": names.get(v)} for v in value]
            elif value:
                view[field[:-3]] = {"id": value, "name": names.get(value)}
        view["image"] = cake_image_url(cake)
        views.append(view)
    return views


def find_cake(db, cake_id: str) -> dict:
    cake = db["cake"].find_one({"_id": parse_object_id(cake_id, "cake")})
    if not cake:
        raise NotFoundError(f"Cake not found (ID: {cake_id})")
    return cake


def check_stock(cake: dict, quantity: int) -> None:
    stock = cake.get("stock")
    if stock is not None and quantity > stock:
        raise StockError(f"Only {stock} items available in stock for {cake.get('name')}")


def reserve_stock(db, cake_id: str, quantity: int) -> Optional[dict]:
    """Take ``quantity`` off a tracked stock only if that much is left.

    Returns the updated cake, or None when the floor check failed.
    """
    return db["cake"].find_one_and_update(
        {"_id": ObjectId(cake_id), "stock": {"$ne": None, "$gte": quantity}},
        {"$inc": {"stock": -quantity}},
        return_document=ReturnDocument.AFTER,
    )


def release_stock(db, cake_id: str, quantity: int) -> None:
    db["cake"].update_one({"_id": ObjectId(cake_id), "stock": {"$ne": None}}, {"$inc": {"stock": quantity}})


@router.get("/cakes")
def list_cakes(page: int = Query(1, ge=1), limit: int = Query(6, ge=1),
               _: AuthContext = Depends(get_auth), db=Depends(get_db)):
    cursor = db["cake"].find().sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    cakes = cake_views(db, list(cursor))
    total = db["cake"].count_documents({})
    return {"message": "Cakes fetched successfully", "data": cakes, "total": total, "page": page, "limit": limit}


@router.get("/cakes/{cake_id}")
def get_cake(cake_id: str, _: AuthContext = Depends(get_auth), db=Depends(get_db)):
    cake = find_cake(db, cake_id)
    return {"message": "Cake fetched successfully", "data": cake_views(db, [cake])[0]}


@router.post("/admin/cakes", status_code=201)
def create_cake(payload: Cake, auth: AuthContext = Depends(require_admin), db=Depends(get_db)):
    if db["cake"].find_one({"name": payload.name}):
        raise ConflictError("Cake name already exists.")
    validate_references(db, payload)
    now = utcnow()
    doc = {**payload.model_dump(), "created_by": auth.user_id, "created_at": now, "updated_at": now}
    try:
        inserted = db["cake"].insert_one(doc).inserted_id
    except DuplicateKeyError:
        raise ConflictError("Cake name already exists.")
    logger.info("Cake %s created by %s", inserted, auth.user_id)
    cake = db["cake"].find_one({"_id": inserted})
    return {"message": "Cake created successfully.", "data": cake_views(db, [cake])[0]}


@router.put("/admin/cakes/{cake_id}")
def update_cake(cake_id: str, payload: Cake, _: AuthContext = Depends(require_admin), db=Depends(get_db)):
    oid = parse_object_id(cake_id, "cake")
    if db["cake"].find_one({"name": payload.name, "_id": {"$ne": oid}}):
        raise ConflictError("Cake name already exists.")
    validate_references(db, payload)
    update = {**payload.model_dump(), "updated_at": utcnow()}
    try:
        cake = db["cake"].find_one_and_update({"_id": oid}, {"$set": update}, return_document=ReturnDocument.AFTER)
    except DuplicateKeyError:
        raise ConflictError("Cake name already exists.")
    if not cake:
        raise NotFoundError("Cake not found.")
    return {"message": "Cake updated successfully.", "data": cake_views(db, [cake])[0]}


@router.delete("/admin/cakes/{cake_id}")
def delete_cake(cake_id: str, _: AuthContext = Depends(require_admin), db=Depends(get_db)):
    oid = parse_object_id(cake_id, "cake")
    res = db["cake"].delete_one({"_id": oid})
    if res.deleted_count == 0:
        raise NotFoundError("Cake not found.")
    return {"message": "Cake deleted successfully."}


@router.put("/cakes/{cake_id}/stock")
def decrement_stock(cake_id: str, payload: StockUpdate, _: AuthContext = Depends(require_admin),
                    db=Depends(get_db)):
    cake = find_cake(db, cake_id)
    if cake.get("stock") is None:
        return {"message": "Stock is not tracked for this cake.", "stock": None}
    check_stock(cake, payload.quantity)
    updated = reserve_stock(db, cake_id, payload.quantity)
    if updated is None:
        # Stock moved between the read and the conditional update
        raise StockError(f"Only {find_cake(db, cake_id).get('stock')} items available in stock for {cake['name']}")
    return {"message": "Stock updated successfully!", "stock": updated["stock"]}
