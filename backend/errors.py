"""
Meditation Streak Engine - Error Taxonomy
"""


class MeditationError(Exception):
    """Base class for errors raised by the streak engine."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UserNotFound(MeditationError):
    status_code = 404

    def __init__(self, user_id: int):
        super().__init__(f"User not found: {user_id}")
        self.user_id = user_id


class InvalidDuration(MeditationError):
    status_code = 400

    def __init__(self, duration):
        super().__init__(f"Duration must be a positive integer (minutes), got {duration!r}")
        self.duration = duration


class TransactionConflict(MeditationError):
    """Concurrent modification or deadlock. Safe to retry the whole operation."""

    status_code = 409


class PersistenceUnavailable(MeditationError):
    """The store could not be reached. Nothing was committed."""

    status_code = 503
