import logging
import re
import uuid
from typing import Optional

import requests
from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import Response

from config import Config
from database import get_db, parse_object_id, utcnow
from errors import NotFoundError, ShopError
from schemas import Image
from security import AuthContext, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/images", tags=["images"])

ALLOWED_MIME_TYPES = {"image/jpeg", "image/png", "image/gif"}
IMAGE_URL_RE = re.compile(r"\.(jpeg|jpg|png|gif)$", re.IGNORECASE)


def image_link(image_id) -> str:
    return f"{Config.PUBLIC_BASE_URL}/api/images/{image_id}"


def cake_image_url(cake: Optional[dict]) -> str:
    """Link to the first image of a cake, or the placeholder."""
    image_ids = (cake or {}).get("image_ids") or []
    if not image_ids:
        return Config.PLACEHOLDER_IMAGE_URL
    return image_link(image_ids[0])


def fetch_remote_image(url: str) -> Image:
    if not IMAGE_URL_RE.search(url.split("?", 1)[0]):
        raise ShopError("Invalid image URL format")
    try:
        response = requests.get(url, timeout=Config.IMAGE_FETCH_TIMEOUT)
        response.raise_for_status()
    except requests.RequestException as exc:
        raise ShopError(f"Could not fetch image: {exc}")
    mime_type = response.headers.get("content-type", "").split(";", 1)[0].strip().lower()
    if mime_type not in ALLOWED_MIME_TYPES:
        raise ShopError("URL must point to a JPEG, PNG, or GIF image")
    filename = url.rstrip("/").rsplit("/", 1)[-1] or f"url-image-{uuid.uuid4()}"
    data = response.content
    return Image(data=data, filename=filename, mime_type=mime_type, size=len(data))


def read_upload(upload: UploadFile) -> Image:
    mime_type = (upload.content_type or "").lower()
    if mime_type not in ALLOWED_MIME_TYPES:
        raise ShopError("Only JPEG, PNG, or GIF images are allowed")
    data = upload.file.read()
    filename = f"{uuid.uuid4()}-{upload.filename or 'upload'}"
    return Image(data=data, filename=filename, mime_type=mime_type, size=len(data))


@router.post("", status_code=201)
def upload_image(image: Optional[UploadFile] = File(None), image_url: Optional[str] = Form(None),
                 auth: AuthContext = Depends(require_admin), db=Depends(get_db)):
    if image is not None:
        record = read_upload(image)
    elif image_url:
        record = fetch_remote_image(image_url.strip())
    else:
        raise ShopError("Provide an image file or URL")

    doc = {**record.model_dump(), "created_at": utcnow()}
    inserted = db["image"].insert_one(doc).inserted_id
    logger.info("Stored image %s (%s, %d bytes) for %s", inserted, record.mime_type, record.size, auth.user_id)
    return {
        "message": "Image uploaded successfully",
        "data": {
            "id": str(inserted),
            "filename": record.filename,
            "mime_type": record.mime_type,
            "size": record.size,
        },
    }


@router.get("/{image_id}")
def get_image(image_id: str, db=Depends(get_db)):
    oid = parse_object_id(image_id, "image")
    image = db["image"].find_one({"_id": oid})
    if not image:
        raise NotFoundError("Image not found")
    return Response(content=bytes(image["data"]), media_type=image["mime_type"])

