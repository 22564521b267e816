import logging
from functools import wraps

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.core.exceptions import AppError

logger = logging.getLogger(__name__)


class DBException(Exception):
    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def transactional(func):
    """
    Run a service method as one unit of work on ``self.db``.
    Commits on success; any error rolls the session back before propagating.
    """

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            result = func(self, *args, **kwargs)
            self.db.commit()
            return result
        except AppError:
            self.db.rollback()
            raise
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(f"Integrity error in {func.__qualname__}: {e.orig}")
            raise DBException("Duplicate entry: already exists", 409)
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"Database error in {func.__qualname__}", exc_info=True)
            raise DBException("Database error occurred", 500)
        except Exception:
            self.db.rollback()
            raise

    return wrapper
