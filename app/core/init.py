"""
Application initialization module
Handles initial setup tasks like seeding the difficulty levels
"""

import logging

from sqlalchemy.orm import Session

from app.models.question import LEVEL_NAMES, Level

logger = logging.getLogger(__name__)


def init_levels(db: Session) -> None:
    """
    Make sure the easy / medium / hard levels exist with their fixed ids.

    Question selection and scoring rely on these ids.
    """
    try:
        existing = {level.id for level in db.query(Level).all()}
        missing = [
            Level(id=level_id, name=name)
            for level_id, name in LEVEL_NAMES.items()
            if level_id not in existing
        ]
        if not missing:
            logger.info("✅ Difficulty levels already present")
            return

        db.add_all(missing)
        db.commit()
        logger.info(f"✅ Seeded difficulty levels: {[level.name for level in missing]}")

    except Exception as e:
        logger.error(f"❌ Failed to seed difficulty levels: {e}")
        db.rollback()
        raise


def initialize_application(db: Session) -> None:
    """
    Run all application initialization tasks.

    Args:
        db: Database session
    """
    logger.info("🚀 Starting application initialization...")

    init_levels(db)

    logger.info("✅ Application initialization completed!")
