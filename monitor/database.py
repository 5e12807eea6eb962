"""
Database operations for the site monitor.

Listings are stored per target (``selector`` column) and replaced as a whole
at the end of every successful check. Configuration sections live in a small
key/value table with JSON encoded values.
"""
import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Optional

from .models import Listing
from .utils import now_iso

logger = logging.getLogger(__name__)


# Schema definitions
DDL_LISTINGS = """
CREATE TABLE IF NOT EXISTS listings (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  title TEXT NOT NULL,
  price TEXT NOT NULL,
  image_url TEXT,
  url TEXT NOT NULL DEFAULT '',
  selector TEXT NOT NULL,
  timestamp TEXT NOT NULL,
  description TEXT,
  seller TEXT,
  location TEXT,
  date TEXT,
  condition TEXT,
  category TEXT,
  attributes TEXT
);
"""

DDL_CONFIG = """
CREATE TABLE IF NOT EXISTS config (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL
);
"""

DDL_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_listings_selector ON listings(selector);",
    "CREATE INDEX IF NOT EXISTS idx_listings_timestamp ON listings(timestamp);",
]


def db_connect(path: str) -> sqlite3.Connection:
    """Create database connection with optimized settings."""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    conn = sqlite3.connect(path, timeout=30.0, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    return conn


def db_init(conn: sqlite3.Connection):
    """Initialize database schema with tables and indexes."""
    conn.execute(DDL_LISTINGS)
    conn.execute(DDL_CONFIG)
    for ddl in DDL_INDEXES:
        conn.execute(ddl)
    conn.commit()


@contextmanager
def get_db_connection(path: str):
    """Open a connection for the duration of a block, always closing it."""
    conn = None
    try:
        conn = db_connect(path)
        yield conn
    except sqlite3.Error as e:
        logger.error(f"Database error: {e}")
        raise
    finally:
        if conn is not None:
            conn.close()


def row_to_listing(row: sqlite3.Row) -> Listing:
    """Convert a listings row to a Listing."""
    try:
        attributes = json.loads(row["attributes"]) if row["attributes"] else []
    except (TypeError, ValueError):
        attributes = []
    return Listing(
        id=row["id"],
        title=row["title"],
        price=row["price"],
        image_url=row["image_url"] or None,
        url=row["url"] or "",
        selector=row["selector"],
        timestamp=row["timestamp"],
        description=row["description"] or "",
        seller=row["seller"] or "",
        location=row["location"] or "",
        date=row["date"] or "",
        attributes=attributes,
    )


def db_get_listings(conn: sqlite3.Connection, selector: Optional[str] = None) -> List[Listing]:
    """Stored listings, newest first, optionally restricted to one target."""
    if selector is None:
        cur = conn.execute("SELECT * FROM listings ORDER BY timestamp DESC, id DESC")
    else:
        cur = conn.execute(
            "SELECT * FROM listings WHERE selector = ? ORDER BY timestamp DESC, id DESC",
            (selector,)
        )
    return [row_to_listing(r) for r in cur.fetchall()]


def db_latest_timestamp(conn: sqlite3.Connection) -> Optional[str]:
    """Timestamp of the most recently stored listing across all targets."""
    r = conn.execute("SELECT MAX(timestamp) FROM listings").fetchone()
    return r[0] if r else None


def db_replace_listings(
    conn: sqlite3.Connection,
    selector: str,
    items: Iterable[Listing],
    previous: Iterable[Listing] = (),
    timestamp: Optional[str] = None
) -> List[Listing]:
    """
    Replace the stored listing set of one target in a single transaction.

    ``previous`` is the snapshot read before this call; it only supplies the
    first-seen timestamps of listings that survive the replacement. Items are
    deduplicated on (title, price, url) within the batch and against whatever
    is still stored for the target after the delete.

    Returns the listings that were written.
    """
    ts = timestamp or now_iso()
    first_seen = {p.key: p.timestamp for p in previous if p.timestamp}
    saved: List[Listing] = []
    duplicates = 0

    with conn:
        cur = conn.execute("DELETE FROM listings WHERE selector = ?", (selector,))
        logger.debug(f"Deleted {cur.rowcount} old listings for selector {selector}")

        remaining = {
            (r["title"], r["price"], r["url"] or "")
            for r in conn.execute(
                "SELECT title, price, url FROM listings WHERE selector = ?", (selector,)
            )
        }

        seen = set()
        for item in items:
            key = item.key
            if key in seen or key in remaining:
                logger.debug(f"Found duplicate item: {item.title} | {item.price} | {item.url}")
                duplicates += 1
                continue
            seen.add(key)
            saved.append(Listing(
                title=item.title,
                price=item.price,
                image_url=item.image_url,
                url=item.url or "",
                description=item.description,
                seller=item.seller,
                location=item.location,
                date=item.date,
                attributes=list(item.attributes),
                selector=selector,
                timestamp=first_seen.get(key, ts),
            ))

        for lst in saved:
            cur = conn.execute("""
            INSERT INTO listings (
              title,price,image_url,url,selector,timestamp,description,
              seller,location,date,condition,category,attributes
            ) VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?)
            """, (
                lst.title, lst.price, lst.image_url, lst.url, lst.selector, lst.timestamp,
                lst.description, lst.seller, lst.location, lst.date,
                lst.condition, lst.category, json.dumps(lst.attributes, ensure_ascii=False)
            ))
            lst.id = cur.lastrowid

    logger.info(f"Saved {len(saved)} listings for selector {selector}")
    if duplicates:
        logger.debug(f"Filtered out {duplicates} duplicate items")
    return saved


def db_clear_listings(conn: sqlite3.Connection) -> int:
    """Delete every stored listing. Returns the number of removed rows."""
    with conn:
        cur = conn.execute("DELETE FROM listings")
    return cur.rowcount


def db_get_config(conn: sqlite3.Connection, key: str, default: Any = None) -> Any:
    """Read one configuration section."""
    r = conn.execute("SELECT value FROM config WHERE key = ?", (key,)).fetchone()
    if r is None:
        return default
    try:
        return json.loads(r["value"])
    except ValueError:
        # Older rows may hold a bare string
        return r["value"]


def db_set_config(conn: sqlite3.Connection, key: str, value: Any):
    """Insert or replace one configuration section."""
    with conn:
        conn.execute(
            "INSERT INTO config (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, json.dumps(value, ensure_ascii=False))
        )


def db_get_all_config(conn: sqlite3.Connection) -> Dict[str, Any]:
    """All configuration sections keyed by name."""
    result = {}
    for r in conn.execute("SELECT key, value FROM config"):
        try:
            result[r["key"]] = json.loads(r["value"])
        except ValueError:
            result[r["key"]] = r["value"]
    return result
