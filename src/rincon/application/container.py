from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from rincon.config import Settings
from rincon.repositories.contracts import SalesStore
from rincon.repositories.remote_repo import RemoteRepository
from rincon.repositories.sqlite_repo import SqliteRepository
from rincon.services.backup_service import BackupService
from rincon.services.customer_service import CustomerService
from rincon.services.export_service import ExportService
from rincon.services.inventory_service import InventoryService
from rincon.services.reporting_service import ReportingService
from rincon.services.sales_service import SalesService


@dataclass(frozen=True)
class AppContainer:
    repo: SalesStore
    inventory: InventoryService
    customers: CustomerService
    sales: SalesService
    reporting: ReportingService
    exports: ExportService
    backup: BackupService


def build_store(db_path: Path | str, settings: Settings) -> SalesStore:
    # the only place that knows which backend is active
    if settings.use_remote:
        return RemoteRepository(settings.remote_url, settings.remote_key, timeout=settings.remote_timeout)
    return SqliteRepository(db_path)


def build_container(
    db_path: Path | str,
    settings: Settings | None = None,
    backup_dir: Path | str | None = None,
) -> AppContainer:
    settings = settings or Settings()
    backup_dir = Path(backup_dir) if backup_dir is not None else Path(db_path).parent / "backups"
    repo = build_store(db_path, settings)
    repo.init_db()

    return AppContainer(
        repo=repo,
        inventory=InventoryService(repo),
        customers=CustomerService(repo),
        sales=SalesService(repo, policy=settings.pricing),
        reporting=ReportingService(repo),
        exports=ExportService(repo),
        backup=BackupService(repo, backup_dir),
    )
