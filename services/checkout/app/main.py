"""Creator checkout service entrypoint."""

import logging
import os

from fastapi import FastAPI

from services.checkout.app.db.init_db import init_db
from services.checkout.app.routers.attempts import router as attempts_router
from services.checkout.app.routers.proxy import router as proxy_router

logging.basicConfig(
    level=os.getenv("CHECKOUT_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Creator Checkout API")

app.include_router(proxy_router)
app.include_router(attempts_router)


@app.on_event("startup")
def _startup() -> None:
    init_db()


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}
