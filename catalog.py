"""
Catalog entries: categories, flavors, sizes, tags, sponge types, shapes,
availabilities, delivery options and dietary preferences.

Every kind is a uniquely named record with the same create / list / update /
delete surface, so the routers are built from one factory.
"""
import logging
from dataclasses import dataclass
from typing import Type

from bson import ObjectId
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import create_document, get_db, get_documents, parse_object_id, serialize_doc, utcnow
from errors import ConflictError, NotFoundError
from schemas import (
    Availability,
    Category,
    DeliveryOption,
    DietaryPreference,
    Flavor,
    Shape,
    Size,
    SpongeType,
    Tag,
)
from security import AuthContext, get_auth, require_admin

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CatalogKind:
    schema: Type[BaseModel]
    path: str
    label: str

    @property
    def collection(self) -> str:
        return self.schema.__name__.lower()

    @property
    def title(self) -> str:
        return self.label[:1].upper() + self.label[1:]


CATALOG_KINDS = [
    CatalogKind(Category, "categories", "category"),
    CatalogKind(Flavor, "flavors", "flavor"),
    CatalogKind(Size, "sizes", "size"),
    CatalogKind(Tag, "tags", "tag"),
    CatalogKind(SpongeType, "sponge-types", "sponge type"),
    CatalogKind(Shape, "shapes", "shape"),
    CatalogKind(Availability, "availabilities", "availability"),
    CatalogKind(DeliveryOption, "delivery-options", "delivery option"),
    CatalogKind(DietaryPreference, "dietary-preferences", "dietary preference"),
]


def name_taken(db, collection: str, name: str, exclude_id=None) -> bool:
    query = {"name": name}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    return db[collection].find_one(query, {"_id": 1}) is not None


def create_entry(db, kind: CatalogKind, payload: BaseModel) -> dict:
    data = payload.model_dump(exclude_none=True)
    if name_taken(db, kind.collection, data["name"]):
        raise ConflictError(f"{kind.title} name already exists")
    try:
        inserted = create_document(db, kind.collection, data)
    except DuplicateKeyError:
        raise ConflictError(f"{kind.title} name already exists")
    return db[kind.collection].find_one({"_id": ObjectId(inserted)})


def list_entries(db, kind: CatalogKind) -> list:
    return get_documents(db, kind.collection, sort=[("name", 1)])


def update_entry(db, kind: CatalogKind, entry_id: str, payload: BaseModel) -> dict:
    oid = parse_object_id(entry_id, kind.label)
    data = payload.model_dump(exclude_none=True)
    if name_taken(db, kind.collection, data["name"], exclude_id=oid):
        raise ConflictError(f"{kind.title} name already exists")
    data["updated_at"] = utcnow()
    try:
        doc = db[kind.collection].find_one_and_update(
            {"_id": oid}, {"$set": data}, return_document=ReturnDocument.AFTER
        )
    except DuplicateKeyError:
        raise ConflictError(f"{kind.title} name already exists")
    if not doc:
        raise NotFoundError(f"{kind.title} not found")
    return doc


def delete_entry(db, kind: CatalogKind, entry_id: str) -> None:
    oid = parse_object_id(entry_id, kind.label)
    res = db[kind.collection].delete_one({"_id": oid})
    if res.deleted_count == 0:
        raise NotFoundError(f"{kind.title} not found")


def build_router(kind: CatalogKind) -> APIRouter:
    router = APIRouter(prefix=f"/api/{kind.path}", tags=["catalog"])
    schema = kind.schema

    @router.post("", status_code=201, name=f"create_{kind.collection}")
    def create(payload: schema, auth: AuthContext = Depends(require_admin), db=Depends(get_db)):
        doc = create_entry(db, kind, payload)
        logger.info("Created %s %s by %s", kind.label, doc["_id"], auth.user_id)
        return {"message": f"{kind.title} created successfully", "data": serialize_doc(doc)}

    @router.get("", name=f"list_{kind.collection}")
    def list_all(_: AuthContext = Depends(get_auth), db=Depends(get_db)):
        docs = [serialize_doc(d) for d in list_entries(db, kind)]
        return {"message": f"{kind.title} list fetched successfully", "data": docs}

    @router.put("/{entry_id}", name=f"update_{kind.collection}")
    def update(entry_id: str, payload: schema, _: AuthContext = Depends(require_admin), db=Depends(get_db)):
        doc = update_entry(db, kind, entry_id, payload)
        return {"message": f"{kind.title} updated successfully", "data": serialize_doc(doc)}

    @router.delete("/{entry_id}", name=f"delete_{kind.collection}")
    def delete(entry_id: str, _: AuthContext = Depends(require_admin), db=Depends(get_db)):
        delete_entry(db, kind, entry_id)
        return {"message": f"{kind.title} deleted successfully"}

    return router


routers = [build_router(kind) for kind in CATALOG_KINDS]
