from __future__ import annotations

import logging
import os

from services.checkout.app.db.database import get_engine
from services.checkout.app.db.models import Base

logger = logging.getLogger(__name__)


def init_db() -> None:
    if os.getenv("CHECKOUT_DB_AUTO_CREATE", "true").strip().lower() not in {"1", "true", "yes", "y"}:
        logger.info("CHECKOUT_DB_AUTO_CREATE is off; skipping table creation")
        return

    engine = get_engine()
    Base.metadata.create_all(bind=engine)
    logger.info("Checkout tables ready on %s", engine.url.render_as_string(hide_password=True))
