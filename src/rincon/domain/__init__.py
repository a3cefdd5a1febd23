from .models import Product, Customer, SaleItem, Sale, Totals, CommitResult
from .errors import ValidationError, NotFoundError, InsufficientStockError, InvalidBackupError

__all__ = [
    "Product",
    "Customer",
    "SaleItem",
    "Sale",
    "Totals",
    "CommitResult",
    "ValidationError",
    "NotFoundError",
    "InsufficientStockError",
    "InvalidBackupError",
]
