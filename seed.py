"""
Explicit seed step for the customization catalog.

Run once per deployment (``cakeshop-seed`` or ``python seed.py``). Inserts the
default sponge types and shapes that are missing; existing entries are left alone.
"""
import logging

import click

from config import configure_logging
import database
from database import ensure_indexes, utcnow

logger = logging.getLogger(__name__)

DEFAULT_SPONGE_TYPES = [
    {"name": "Vanilla", "description": "Classic vanilla sponge"},
    {"name": "Chocolate", "description": "Rich chocolate sponge"},
    {"name": "Red Velvet", "description": "Soft red velvet sponge"},
    {"name": "Black Forest", "description": "Black forest sponge"},
    {"name": "Butterscotch", "description": "Buttery sponge with caramel flavor"},
]

DEFAULT_SHAPES = [
    {"name": "Round", "description": "Traditional round shape"},
    {"name": "Square", "description": "Square shape"},
    {"name": "Heart", "description": "Heart shape for special occasions"},
    {"name": "Rectangle", "description": "Rectangle shape cake"},
    {"name": "Oval", "description": "Oval shape cake"},
]


def seed_collection(db, collection: str, entries: list) -> int:
    inserted = 0
    for entry in entries:
        now = utcnow()
        res = db[collection].update_one(
            {"name": entry["name"]},
            {"$setOnInsert": {**entry, "created_at": now, "updated_at": now}},
            upsert=True,
        )
        if res.upserted_id is not None:
            inserted += 1
    return inserted


def seed_defaults(db) -> dict:
    ensure_indexes(db)
    counts = {
        "spongetype": seed_collection(db, "spongetype", DEFAULT_SPONGE_TYPES),
        "shape": seed_collection(db, "shape", DEFAULT_SHAPES),
    }
    logger.info("Seeded defaults: %s", counts)
    return counts


@click.command("seed")
def main():
    """Insert the default sponge types and shapes that are missing."""
    configure_logging()
    if database.db is None:
        raise click.ClickException("DATABASE_URL and DATABASE_NAME must be set to seed")
    counts = seed_defaults(database.db)
    for collection, inserted in counts.items():
        click.echo(f"PASS {collection}: {inserted} inserted")


if __name__ == "__main__":
    main()
