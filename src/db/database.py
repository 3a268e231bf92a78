# manages sqlite connections, schema setup and value encoding for the sqlite adapter
import asyncio
import json
import os.path
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from sqlite3 import Row
from typing import Any, Dict, Mapping, Optional

import aiosqlite

from db.models import JSON_FIELDS
from utils.logger import get_logger
from utils.pure import new_id, utc_now

_logger = get_logger(__name__)

DB_PATH = "data/karigarverse.sqlite"
SCHEMA_DIR = Path(__file__).resolve().parent
SQLITE_SCHEMA = SCHEMA_DIR / "schema-sqlite.sql"
POSTGRES_SCHEMA = SCHEMA_DIR / "schema-postgres.sql"

# (name, slug, description, sort_order)
SEED_CATEGORIES = [
    ("Pottery & Ceramics", "pottery", "Handcrafted pottery and ceramic items", 1),
    ("Textiles & Fabrics", "textiles", "Traditional fabrics and textile products", 2),
    ("Jewelry & Accessories", "jewelry", "Handmade jewelry and fashion accessories", 3),
    ("Woodwork & Furniture", "woodwork", "Wooden crafts and furniture pieces", 4),
    ("Metalwork", "metalwork", "Metal crafts and decorative items", 5),
    ("Paintings & Art", "paintings", "Traditional and contemporary artwork", 6),
]

_initialized_paths: set = set()
_init_lock = asyncio.Lock()


def encode_value(name: str, value: Any) -> Any:
    """Convert a Python value to the representation stored in sqlite."""
    if value is None:
        return None
    if name in JSON_FIELDS:
        return json.dumps(value, default=str)
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def encode_row(row: Mapping[str, Any]) -> Dict[str, Any]:
    return {k: encode_value(k, v) for k, v in row.items()}


async def _init_db(conn: aiosqlite.Connection) -> None:
    _logger.info(f"Initializing database with script {SQLITE_SCHEMA.name}...")
    with open(SQLITE_SCHEMA, "r") as f:
        await conn.executescript(f.read())
    now = utc_now().isoformat()
    await conn.executemany(
        """
        INSERT OR IGNORE INTO categories(id, name, slug, description, sort_order,
                                         is_active, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, 1, ?, ?);
        """,
        [(new_id(), *category, now, now) for category in SEED_CATEGORIES],
    )


async def _table_exists(conn: aiosqlite.Connection, table_name: str) -> bool:
    cur = await conn.execute(
        """
        SELECT name
        FROM sqlite_master
        WHERE type = 'table'
          AND name = ?;
        """,
        (table_name,),
    )
    row = await cur.fetchone()
    await cur.close()
    return row is not None


@asynccontextmanager
async def connect(path: Optional[str] = None, timeout: float = 5.0):
    """Async context manager yielding an aiosqlite connection with FK enabled.

    The connection runs in autocommit mode; multi statement writes open their
    own ``BEGIN IMMEDIATE`` transaction. The schema and seed categories are
    created on first use of each database file.
    """
    path = path or DB_PATH
    directory = os.path.dirname(path)
    if directory and not os.path.exists(directory):
        os.makedirs(directory, exist_ok=True)

    conn = await aiosqlite.connect(path, timeout=timeout, isolation_level=None)
    conn.row_factory = Row
    try:
        await conn.execute("PRAGMA foreign_keys = ON;")
        if path not in _initialized_paths:
            async with _init_lock:
                if path not in _initialized_paths:
                    if not await _table_exists(conn, "artisan_profiles"):
                        _logger.info("Initializing database...")
                        await _init_db(conn)
                    _initialized_paths.add(path)
        yield conn
    finally:
        await conn.close()
