import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import accounts
import cakes
import cart
import catalog
import coupons
import database
import images
import orders
from config import Config, configure_logging
from database import ensure_indexes
from errors import register_error_handlers


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    if database.db is not None:
        ensure_indexes(database.db)
    yield


# App setup
app = FastAPI(title="Cake Shop API", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_error_handlers(app)

app.include_router(accounts.router)
for catalog_router in catalog.routers:
    app.include_router(catalog_router)
app.include_router(cakes.router)
app.include_router(images.router)
app.include_router(cart.router)
app.include_router(coupons.router)
app.include_router(orders.router)


# Health
@app.get("/")
def root():
    return {"message": "Cake Shop API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
            response["collections"] = database.db.list_collection_names()[:10]
    except Exception as e:
        response["database"] = f"⚠️ Connected but error: {str(e)[:80]}"
    return response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=Config.PORT)
