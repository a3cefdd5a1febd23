from __future__ import annotations

import logging
from typing import Optional

from rincon.domain.errors import NotFoundError, ValidationError
from rincon.domain.models import CUSTOMER_TYPES, Customer

log = logging.getLogger(__name__)


class CustomerService:
    def __init__(self, repo):
        self.repo = repo

    def list_customers(self) -> list[Customer]:
        return self.repo.list_customers()

    def add_customer(self, name: str, type_: str = "B2C", contact: Optional[str] = None) -> str:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name is required.")
        if type_ not in CUSTOMER_TYPES:
            raise ValidationError(f"Customer type must be one of: {', '.join(CUSTOMER_TYPES)}")
        contact = (contact or "").strip() or None
        cid = self.repo.add_customer(name, type_, contact)
        log.info("customer_created customer_id=%s type=%s", cid, type_)
        return cid

    def delete_customer(self, customer_id: str) -> None:
        # sales keep their customer_id and name snapshot
        if not self.repo.delete_customer(str(customer_id)):
            raise NotFoundError("Customer not found.")
        log.info("customer_deleted customer_id=%s", customer_id)
