from __future__ import annotations

from formblock.core.database import db


async def require_database() -> None:
    if not db.is_connected():
        await db.ensure_schema()
    return None
