"""Create tables, the lab list and a bootstrap admin.

    ADMIN_EMAIL=admin@uni.edu ADMIN_PASSWORD=... python -m labbook.seed
"""
import logging
import os

from labbook.availability import ensure_lab
from labbook.config import Settings
from labbook.database import Base, make_engine, make_session_factory
from labbook.models import Lab, UserRole
from labbook.users import UserService

logger = logging.getLogger(__name__)

LABS = [
    "Computer Lab C3",
    "Networking Lab H8",
    "Software Engineering Lab J10",
]


def seed(db, settings: Settings, admin_email=None, admin_password=None) -> int:
    added = 0
    for name in [settings.default_lab_name] + LABS:
        before = db.query(Lab).filter_by(name=name).count()
        ensure_lab(db, name)
        added += 1 - before

    if admin_email and admin_password:
        users = UserService(db)
        if users.find_by_email(admin_email) is None:
            users.create("System", "Administrator", admin_email, admin_password, UserRole.admin.value)
        else:
            logger.info("Admin %s already exists", admin_email)
    return added


def main():
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level)
    engine = make_engine(settings.database_url)
    Base.metadata.create_all(bind=engine)
    db = make_session_factory(engine)()
    try:
        added = seed(db, settings, os.getenv("ADMIN_EMAIL"), os.getenv("ADMIN_PASSWORD"))
    finally:
        db.close()
    logger.info("Seed completed. Added %d labs.", added)


if __name__ == "__main__":
    main()
