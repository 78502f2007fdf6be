from __future__ import annotations

from typing import Iterable

from formblock.core.database import db


async def get_option(name: str) -> str | None:
    row = await db.fetch_one("SELECT value FROM options WHERE name = ?", (name,))
    if not row:
        return None
    value = row.get("value")
    return str(value) if value is not None else None


async def get_options(names: Iterable[str]) -> dict[str, str]:
    keys = [name for name in names if name]
    if not keys:
        return {}
    placeholders = ", ".join("?" for _ in keys)
    rows = await db.fetch_all(
        f"SELECT name, value FROM options WHERE name IN ({placeholders})",
        tuple(keys),
    )
    return {str(row["name"]): str(row["value"]) for row in rows if row.get("value") is not None}


async def update_option(name: str, value: str) -> None:
    await db.execute(
        """
        INSERT INTO options (name, value) VALUES (?, ?)
        ON CONFLICT(name) DO UPDATE SET value = excluded.value
        """,
        (name, value),
    )


async def delete_options(names: Iterable[str]) -> int:
    keys = [name for name in names if name]
    if not keys:
        return 0
    existing = await get_options(keys)
    placeholders = ", ".join("?" for _ in keys)
    await db.execute(f"DELETE FROM options WHERE name IN ({placeholders})", tuple(keys))
    return len(existing)
