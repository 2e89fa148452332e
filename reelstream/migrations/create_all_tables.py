"""
Migration script to create all database tables

Run this script to create all database tables:
    python -m reelstream.migrations.create_all_tables

If ADMIN_EMAIL and ADMIN_PASSWORD are set, an admin account is created
(or an existing account with that email is promoted).
"""

import logging
import os

from reelstream.database import Base, SessionLocal, engine
# Import all models to ensure they're registered with Base
import reelstream.models  # noqa: F401
from reelstream.repositories.base import ROLE_ADMIN
from reelstream.repositories.sql import SqlUserRepository
from reelstream.utils.security import hash_password

logger = logging.getLogger(__name__)


def create_tables():
    """Create all database tables"""
    Base.metadata.create_all(bind=engine)
    logger.info(f"Tables ready: {', '.join(sorted(Base.metadata.tables))}")


def bootstrap_admin(email: str, password: str, session_factory=SessionLocal):
    """Create the first admin account, or promote an existing user"""
    db = session_factory()
    try:
        users = SqlUserRepository(db)
        email = email.strip().lower()
        user = users.get_by_email(email)
        if user is None:
            user = users.create(email, hash_password(password), display_name="Admin", role=ROLE_ADMIN)
            logger.info(f"Admin account created: {email}")
        elif not user.is_admin:
            user = users.update(user.id, {"role": ROLE_ADMIN})
            logger.info(f"Existing account promoted to admin: {email}")
        return user
    finally:
        db.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    create_tables()
    admin_email = os.getenv("ADMIN_EMAIL")
    admin_password = os.getenv("ADMIN_PASSWORD")
    if admin_email and admin_password:
        bootstrap_admin(admin_email, admin_password)
