from .inventory_service import InventoryService
from .customer_service import CustomerService
from .sales_service import SalesService
from .reporting_service import ReportingService
from .export_service import ExportService
from .backup_service import BackupService

__all__ = [
    "InventoryService",
    "CustomerService",
    "SalesService",
    "ReportingService",
    "ExportService",
    "BackupService",
]
