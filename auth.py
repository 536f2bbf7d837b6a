import logging
from typing import Optional

import bcrypt
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from database import SessionLocal, User
from errors import BackendError, ValidationError

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def check_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))


def register_user(email: str, password: str, name: str = "", session_factory=SessionLocal) -> User:
    """
    Create a user with a bcrypt password hash. Emails are stored lower-cased.
    """
    email = (email or "").strip().lower()
    if "@" not in email:
        raise ValidationError("A valid email is required")
    if len(password or "") < 6:
        raise ValidationError("Password must have at least 6 characters")

    db = session_factory()
    try:
        user = User(email=email, name=name or email.split("@")[0], password_hash=hash_password(password))
        db.add(user)
        db.commit()
        db.refresh(user)
        db.expunge(user)
    except IntegrityError:
        db.rollback()
        raise ValidationError(f"{email} is already registered")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Could not register %s: %s", email, e)
        raise BackendError(str(e)) from e
    finally:
        db.close()
    logger.info("Registered user %s", user.id)
    return user


def authenticate(email: str, password: str, session_factory=SessionLocal) -> Optional[User]:
    """Return the user when the credentials match, None otherwise."""
    db = session_factory()
    try:
        user = db.query(User).filter(User.email == (email or "").strip().lower()).first()
        if user:
            db.expunge(user)
    except SQLAlchemyError as e:
        logger.error("Login lookup failed: %s", e)
        raise BackendError(str(e)) from e
    finally:
        db.close()

    if user and user.password_hash and check_password(password or "", user.password_hash):
        return user
    logger.warning("Failed login for %s", email)
    return None
