from __future__ import annotations

import logging

from .database import Base, engine, SessionLocal
from .models import Trainer


logger = logging.getLogger(__name__)

DEFAULT_TRAINERS = [
    ("trainer_alex", "Alex Moreno", 150000),
    ("trainer_priya", "Priya Nair", 200000),
    ("trainer_sam", "Sam Okafor", 120000),
]


def upsert_defaults() -> int:
    """Create the default trainers that are missing; returns how many were added."""
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    added = 0
    try:
        for id_, name, price_cents in DEFAULT_TRAINERS:
            if not db.get(Trainer, id_):
                db.add(Trainer(id=id_, name=name, price_cents=price_cents, is_active=True))
                added += 1
        db.commit()
    finally:
        db.close()
    return added


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    added = upsert_defaults()
    logger.info("seed_complete trainers_added=%s", added)


if __name__ == "__main__":
    main()
