"""
Create the schema and, for local runs, a demo salon.

    python -m salonqueue.core.init_db            # tables + demo salon
    python -m salonqueue.core.init_db --no-seed  # tables only
"""

import sys
import logging
from typing import List

from sqlalchemy import inspect

from salonqueue.core.database import engine, Base, SessionLocal
from salonqueue.models import Business, Service, Queue, ServiceProvider, ProviderService

logger = logging.getLogger(__name__)


def init_db() -> None:
    Base.metadata.create_all(bind=engine)
    logger.info(f"Schema ready: {len(Base.metadata.tables)} tables")


def seed_demo_business(slug: str = "demo-salon") -> int:
    """
    Seed one business with a haircut queue and a single expert, unless a
    business with that slug already exists.

    Returns:
        The business id
    """
    db = SessionLocal()

    try:
        existing = db.query(Business).filter(Business.slug == slug).first()
        if existing:
            logger.info(f"[Seed] '{slug}' already present as business {existing.id}")
            return existing.id

        business = Business(name="Demo Salon", slug=slug, open_time="09:00", close_time="20:00")
        db.add(business)
        db.flush()

        haircut = Service(business_id=business.id, name="Haircut", duration_minutes=30, price=300)
        beard = Service(business_id=business.id, name="Beard Trim", duration_minutes=15, price=150)
        db.add_all([haircut, beard])
        db.flush()

        db.add(Queue(business_id=business.id, service_id=haircut.id, name="Haircut"))
        expert = ServiceProvider(business_id=business.id, name="Demo Expert", role="Stylist")
        expert.capabilities.extend([
            ProviderService(service_id=haircut.id),
            ProviderService(service_id=beard.id),
        ])
        db.add(expert)
        db.commit()

        logger.info(f"[Seed] Created '{slug}' as business {business.id} with queue 'Haircut' and 1 expert")
        return business.id

    except Exception as e:
        logger.error(f"[Seed] Failed to seed '{slug}': {e}")
        db.rollback()
        raise
    finally:
        db.close()


def existing_tables() -> List[str]:
    return sorted(inspect(engine).get_table_names())


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")

    before = set(existing_tables())
    init_db()
    created = [t for t in existing_tables() if t not in before]
    logger.info(f"Created tables: {', '.join(created) if created else 'none (already up to date)'}")

    if "--no-seed" not in sys.argv[1:]:
        seed_demo_business()
