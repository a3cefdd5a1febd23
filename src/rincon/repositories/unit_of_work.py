from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Protocol

from rincon.domain.models import CommitResult, Sale


class UnitOfWork(Protocol):
    def __enter__(self) -> "UnitOfWork": ...
    def __exit__(self, exc_type, exc, tb) -> None: ...
    def commit_sale(self, candidate: Sale) -> CommitResult: ...


@dataclass
class RepositoryUnitOfWork:
    """Unit of Work adapter for the sale write use-case.

    Stamps identity and timestamp on the candidate sale and hands it to the
    store, which owns the header + items + stock transaction.
    """

    repo: object

    def __enter__(self) -> "RepositoryUnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return None

    def commit_sale(self, candidate: Sale) -> CommitResult:
        dt_iso = datetime.now().replace(microsecond=0).isoformat(sep=" ")
        sale = replace(candidate, id=uuid.uuid4().hex, datetime=dt_iso)
        return self.repo.create_sale(sale)
