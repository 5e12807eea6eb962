"""
Export utilities for stored listings.
"""
import sqlite3
from typing import List

import pandas as pd

from .models import Listing

EXPORT_COLUMNS = [
    "id", "title", "price", "imageUrl", "url", "description", "seller",
    "location", "date", "condition", "category", "attributes", "selector", "timestamp",
]


def listings_frame(listings: List[Listing]) -> pd.DataFrame:
    """One row per listing, attributes joined with '|'."""
    rows = []
    for x in listings:
        row = x.to_dict()
        row["attributes"] = "|".join(x.attributes)
        rows.append(row)
    return pd.DataFrame(rows, columns=EXPORT_COLUMNS)


def export_new_since(conn: sqlite3.Connection, since_iso: str) -> pd.DataFrame:
    """Listings first seen at or after the given timestamp."""
    q = """
    SELECT *
    FROM listings
    WHERE timestamp >= ?
    ORDER BY timestamp DESC, id DESC
    """
    return pd.read_sql_query(q, conn, params=(since_iso,))

