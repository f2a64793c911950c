from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Protocol
from urllib.parse import parse_qs, urlsplit

from services.checkout.app.db.models import KeyValueEntry
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

CHECKOUT_TOKEN_STORAGE_KEY = "creator_checkout_token"
TOKEN_QUERY_PARAMS = ("checkout_token", "checkoutToken")


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryKeyValueStore:
    """Session tier: lives as long as the process (a browser tab, in storefront terms)."""

    def __init__(self) -> None:
        self._values: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def delete(self, key: str) -> None:
        self._values.pop(key, None)


class SqlKeyValueStore:
    """Durable tier backed by the kv_entries table. Shared by every process on the database."""

    def __init__(self, session_scope: Callable[[], AbstractContextManager[Session]]) -> None:
        self._session_scope = session_scope

    def get(self, key: str) -> str | None:
        with self._session_scope() as db:
            row = db.get(KeyValueEntry, key)
            return row.value if row is not None else None

    def set(self, key: str, value: str) -> None:
        with self._session_scope() as db:
            row = db.get(KeyValueEntry, key)
            if row is None:
                db.add(KeyValueEntry(key=key, value=value))
            else:
                row.value = value
                row.updated_at = datetime.utcnow()

    def delete(self, key: str) -> None:
        with self._session_scope() as db:
            row = db.get(KeyValueEntry, key)
            if row is not None:
                db.delete(row)


class CheckoutTokenStore:
    """Two-tier storage for the checkout token.

    Reads prefer the session tier and fall back to the durable tier. Writes go to both tiers.
    Concurrent writers are last-writer-wins; there is no locking or versioning.
    """

    def __init__(
        self,
        session: KeyValueStore,
        durable: KeyValueStore,
        *,
        key: str = CHECKOUT_TOKEN_STORAGE_KEY,
    ) -> None:
        self._session = session
        self._durable = durable
        self._key = key

    def read(self) -> str | None:
        for tier in (self._session, self._durable):
            value = (tier.get(self._key) or "").strip()
            if value:
                return value
        return None

    def persist(self, token: str) -> None:
        token = token.strip()
        if not token:
            return
        self._session.set(self._key, token)
        self._durable.set(self._key, token)

    def clear(self) -> None:
        self._session.delete(self._key)
        self._durable.delete(self._key)

    def capture_from_query(self, url_or_query: str) -> str | None:
        """Persist a token handed over in the landing URL, bypassing the mint flow."""

        query = urlsplit(url_or_query).query if "?" in url_or_query else url_or_query
        params = parse_qs(query.lstrip("?"))
        for name in TOKEN_QUERY_PARAMS:
            for value in params.get(name, []):
                token = value.strip()
                if token:
                    self.persist(token)
                    logger.info("Captured checkout token from query parameter %s", name)
                    return token
        return None
