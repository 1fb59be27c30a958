# storefront/main.py
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .routes import auth, checkout, orders
from .settings import settings
from .db import close_pool, order_store

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("storefront")

app = FastAPI(title="Storefront Orders API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(checkout.router)
app.include_router(orders.router)
app.include_router(auth.router)

@app.get("/")
def root():
    return {"message": "Storefront orders API is running", "payments": settings.payments_configured}

@app.on_event("startup")
async def _startup_probe_schema():
    try:
        cols = await order_store.load_order_columns()
        logger.info("[startup] orders schema ready (%d optional columns).", len(cols))
    except Exception as e:
        # Don't crash; inserts fall back to the full column set until probed
        logger.warning("[startup] schema probe failed (will insert all columns): %s", e)

@app.on_event("shutdown")
async def _shutdown_pool():
    await close_pool()
