"""External feed registrations - persistence for per-property iCal URLs."""

from psycopg2.extensions import cursor as PgCursor


def insert_feed_url(cur: PgCursor, *, property_id: str, url: str) -> bool:
    """Register a feed URL for a property (idempotent).

    Returns:
        True if newly registered, False if it already existed.
    """
    cur.execute(
        """
        INSERT INTO property_feeds (property_id, url)
        VALUES (%s, %s)
        ON CONFLICT (property_id, url) DO NOTHING
        """,
        (property_id, url),
    )
    return cur.rowcount > 0


def list_feed_urls(cur: PgCursor, property_id: str) -> list[str]:
    cur.execute(
        """
        SELECT url FROM property_feeds
        WHERE property_id = %s
        ORDER BY created_at, url
        """,
        (property_id,),
    )
    return [row[0] for row in cur.fetchall()]


def list_all_feeds(cur: PgCursor) -> dict[str, list[str]]:
    """All registrations grouped by property."""
    cur.execute(
        """
        SELECT property_id, url FROM property_feeds
        ORDER BY property_id, created_at, url
        """
    )
    feeds: dict[str, list[str]] = {}
    for property_id, url in cur.fetchall():
        feeds.setdefault(property_id, []).append(url)
    return feeds
