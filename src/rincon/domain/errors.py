class AppError(Exception):
    """Base app error."""


class ValidationError(AppError):
    pass


class NotFoundError(AppError):
    pass


class InsufficientStockError(AppError):
    pass


class InvalidBackupError(AppError):
    """Backup document is malformed or incomplete; nothing was imported."""
