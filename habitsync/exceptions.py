"""
Custom exceptions for the habit progress engine.
Local failures surface synchronously to the caller; remote failures are
only ever seen by the sync worker.
"""


class HabitSyncException(Exception):
    """Base exception for the habit progress engine"""
    pass


class ValidationException(HabitSyncException):
    """Raised when a business rule or input validation fails"""
    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"Validation error for {field}: {message}")


class HabitNotFoundException(HabitSyncException):
    """Raised when a habit is not found"""
    def __init__(self, habit_id: str):
        self.habit_id = habit_id
        super().__init__(f"Habit with ID {habit_id} not found")


class CompletionNotFoundException(HabitSyncException):
    """Raised when a completion record is not found"""
    def __init__(self, completion_id: str):
        self.completion_id = completion_id
        super().__init__(f"Completion with ID {completion_id} not found")


class OperationNotFoundException(HabitSyncException):
    """Raised when a sync operation is not found"""
    def __init__(self, operation_id: str):
        self.operation_id = operation_id
        super().__init__(f"Sync operation with ID {operation_id} not found")


class DailyLimitException(HabitSyncException):
    """Raised when a per-day XP award cap is reached"""
    def __init__(self, reason: str, used: int, limit: int):
        self.reason = reason
        self.used = used
        self.limit = limit
        super().__init__(f"Daily limit reached: {reason} ({used}/{limit})")


class LocalStoreException(HabitSyncException):
    """Raised when durable local storage fails"""
    def __init__(self, operation: str, details: str):
        self.operation = operation
        self.details = details
        super().__init__(f"Local store {operation} failed: {details}")


class RemoteStoreError(HabitSyncException):
    """Base class for errors returned by a RemoteStore"""
    pass


class RemoteTransientError(RemoteStoreError):
    """Network or timeout failure; the operation will be retried"""
    pass


class RemoteTerminalError(RemoteStoreError):
    """Validation or conflict rejected by the server; never retried"""
    pass
