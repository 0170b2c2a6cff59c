# backend/core/errors.py


class NotFoundError(LookupError):
    """Requested product or history does not exist."""
