"""
Supabase-backed profile store.

This adapter implements ProfileStoreProtocol using a provided Supabase client.
It is duck-typed to avoid a hard dependency during testing. The client is
expected to expose `.table(name)` returning a query builder with
`select(...)`, `eq(...)`, `limit(...)`, `upsert(...)` and `execute()`, where
`execute()` returns an object with a `data` attribute (list of rows).

Security:
- The caller must ensure the client is initialized with the Service Role key
  (server-side only). Row-level security keeps anon clients out of `profiles`.
"""
from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Optional

from .domain import Profile
from .ports import ProfileNotFoundError, TransientBackendError

LOG = logging.getLogger("eduhub.identity_access.profiles")

PROFILE_COLUMNS = (
    "id",
    "email",
    "role",
    "name",
    "phone",
    "location",
    "school_name",
    "grade",
    "age",
    "teaching_grades",
    "ceo",
)


class SupabaseProfileStore:
    def __init__(self, client: Any, table: str = "profiles") -> None:
        self._client = client
        self._table = table

    def _fetch(self, uid: str) -> Optional[dict]:
        res = self._client.table(self._table).select(",".join(PROFILE_COLUMNS)).eq("id", uid).limit(1).execute()
        rows = getattr(res, "data", None)
        if rows is None and isinstance(res, dict):
            rows = res.get("data")
        if not rows:
            return None
        return rows[0]

    def _upsert(self, row: dict) -> None:
        self._client.table(self._table).upsert(row).execute()

    async def get_profile(self, uid: str) -> Profile:
        try:
            row = await asyncio.to_thread(self._fetch, uid)
        except Exception as exc:
            raise TransientBackendError("profile_fetch_failed") from exc
        if row is None:
            raise ProfileNotFoundError(uid)
        try:
            return Profile.from_document(uid, row)
        except ValueError as exc:
            LOG.warning("profile document has no valid role")
            raise ProfileNotFoundError(uid) from exc

    async def set_profile(self, uid: str, profile: Profile) -> None:
        row = profile.to_dict()
        row["id"] = uid
        try:
            await asyncio.to_thread(self._upsert, row)
        except Exception as exc:
            raise TransientBackendError("profile_write_failed") from exc


def create_supabase_profile_store() -> SupabaseProfileStore:
    """Build the store from SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY."""
    url = (os.getenv("SUPABASE_URL") or "").strip()
    key = (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip()
    if not url or not key:
        raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required for PROFILE_BACKEND=supabase")
    from supabase import create_client

    return SupabaseProfileStore(create_client(url, key), table=os.getenv("PROFILES_TABLE", "profiles"))


__all__ = ["SupabaseProfileStore", "create_supabase_profile_store", "PROFILE_COLUMNS"]
