"""
Change detection between the stored and the freshly extracted listing sets.
"""
import hashlib
import json
import logging
import sqlite3
from typing import Iterable, List, Optional

from .database import db_get_listings, db_replace_listings
from .models import CheckResult, Listing

logger = logging.getLogger(__name__)


def fingerprint(items: Iterable[Listing]) -> str:
    """
    Content hash over the (title, price, url) triples of a listing set.

    Triples are sorted by url ascending (title and price break ties) so the
    hash does not depend on page order.
    """
    stable = sorted(
        ({"title": i.title, "price": i.price, "url": i.url or ""} for i in items),
        key=lambda d: (d["url"], d["title"], d["price"])
    )
    payload = json.dumps(stable, ensure_ascii=False, separators=(",", ":"))
    return hashlib.md5(payload.encode("utf-8")).hexdigest()


def previous_fingerprint(previous: List[Listing]) -> Optional[str]:
    """Fingerprint of the stored snapshot, None when nothing was stored yet."""
    if not previous:
        return None
    return fingerprint(previous)


def diff_new_items(previous: List[Listing], current: List[Listing]) -> List[Listing]:
    """Items of ``current`` whose (title, price, url) is absent from ``previous``."""
    known = {p.key for p in previous}
    return [item for item in current if item.key not in known]


def process_check_result(
    conn: sqlite3.Connection,
    target: str,
    items: List[Listing],
    timestamp: Optional[str] = None
) -> CheckResult:
    """
    Compare ``items`` with the stored snapshot of ``target`` and replace it.

    The snapshot is read before the replacement deletes it; the new-item set
    is computed against that read.
    """
    previous = db_get_listings(conn, target)

    prev_hash = previous_fingerprint(previous)
    current_hash = fingerprint(items)

    if prev_hash is None:
        logger.info(f"First check for {target}: all {len(items)} items are new")
        is_changed, new_items = True, list(items)
    elif prev_hash != current_hash:
        new_items = diff_new_items(previous, items)
        logger.info(f"Content changed for {target}: {len(new_items)} new items")
        is_changed = True
    else:
        logger.info(f"No change for {target}")
        is_changed, new_items = False, []

    saved = db_replace_listings(conn, target, items, previous, timestamp=timestamp)
    return CheckResult(target=target, is_changed=is_changed, new_items=new_items, total=len(saved))
