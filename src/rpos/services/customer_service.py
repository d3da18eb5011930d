from __future__ import annotations

import logging
from typing import Iterable, Optional

from rpos.domain.errors import NotFoundError, ValidationError
from rpos.domain.models import Cart, Customer, OrderLine

log = logging.getLogger(__name__)


def _clean(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    return value or None


class CustomerService:
    def __init__(self, repo):
        self.repo = repo

    def _required(self, name: str, mobile_number: str) -> tuple[str, str]:
        name = (name or "").strip()
        mobile_number = (mobile_number or "").strip()
        if not name or not mobile_number:
            raise ValidationError("Name and mobile number are required.")
        return name, mobile_number

    def add_customer(self, name: str, mobile_number: str, email: Optional[str] = None, address: Optional[str] = None) -> int:
        name, mobile_number = self._required(name, mobile_number)
        return self.repo.add_customer(name, mobile_number, _clean(email), _clean(address))

    def update_customer(
        self,
        customer_id: int,
        name: str,
        mobile_number: str,
        email: Optional[str] = None,
        address: Optional[str] = None,
    ) -> None:
        """Overwrite a customer's details. Orders keep the snapshot taken at checkout."""
        name, mobile_number = self._required(name, mobile_number)
        if not self.repo.update_customer(int(customer_id), name, mobile_number, _clean(email), _clean(address)):
            raise NotFoundError("Customer not found.")
        log.info("customer_updated customer_id=%s", customer_id)

    def get_customer(self, customer_id: int) -> Customer:
        c = self.repo.get_customer(int(customer_id))
        if not c:
            raise NotFoundError("Customer not found.")
        return c

    def list_customers(self) -> list[Customer]:
        return self.repo.list_customers()

    def find_by_mobile(self, mobile_number: str) -> list[Customer]:
        return self.repo.find_customers_by_mobile((mobile_number or "").strip())

    @staticmethod
    def cart_for(customer: Optional[Customer], lines: Iterable[OrderLine], mobile_hint: Optional[str] = None) -> Cart:
        """Cart for ``customer``, or for a walk-in when there is none."""
        lines = tuple(lines)
        if customer is None:
            if mobile_hint:
                return Cart(lines=lines, customer_mobile=mobile_hint)
            return Cart(lines=lines)
        return Cart(
            lines=lines,
            customer_id=str(customer.id),
            customer_name=customer.name,
            customer_mobile=customer.mobile_number,
            customer_address=customer.address,
        )
