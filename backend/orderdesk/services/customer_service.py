# Overview: Customer lookup by phone and saved delivery addresses.

from __future__ import annotations

import re

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import Customer, CustomerAddress
from .concurrency import run_with_retry
from .loyalty_service import customer_tier


class CustomerError(Exception):
    """Raised for customer directory errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def normalize_phone(phone: str | None) -> str:
    """Digits only; identification is by phone number."""
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) < 8:
        raise CustomerError("Phone number must have at least 8 digits", details={"phone": phone})
    return digits


def get_customer(customer_id: int) -> Customer | None:
    return db.session.query(Customer).filter_by(id=customer_id).first()


def find_by_phone(store_id: int, phone: str) -> Customer | None:
    return db.session.query(Customer).filter_by(
        store_id=store_id,
        phone=normalize_phone(phone)
    ).first()


def identify_customer(store_id: int, phone: str, name: str | None = None) -> tuple[Customer, bool]:
    """
    Find a store customer by phone, creating one on first contact.

    Returns (customer, created). A racing insert of the same phone loses
    the unique constraint and re-reads the winner.
    """
    digits = normalize_phone(phone)

    existing = db.session.query(Customer).filter_by(store_id=store_id, phone=digits).first()
    if existing:
        return existing, False

    clean_name = (name or "").strip()
    if not clean_name:
        raise CustomerError("Name is required for a new customer", details={"phone": digits})

    def _op():
        customer = Customer(store_id=store_id, name=clean_name, phone=digits, points=0)
        db.session.add(customer)
        db.session.commit()
        return customer

    try:
        customer = run_with_retry(_op)
    except IntegrityError:
        db.session.rollback()
        customer = db.session.query(Customer).filter_by(store_id=store_id, phone=digits).first()
        if not customer:
            raise
        return customer, False

    current_app.logger.info("Customer %s created for store %s", customer.id, store_id)
    return customer, True


def customer_profile(customer: Customer) -> dict:
    data = customer.to_dict()
    data["tier"] = customer_tier(customer.points)
    return data


def list_addresses(customer_id: int) -> list[CustomerAddress]:
    return db.session.query(CustomerAddress).filter_by(
        customer_id=customer_id
    ).order_by(CustomerAddress.created_at.desc(), CustomerAddress.id.desc()).all()


def save_address(
    customer_id: int,
    *,
    street: str,
    neighborhood: str,
    number: str | None = None,
    reference: str | None = None,
    postal_code: str | None = None,
    label: str | None = None,
) -> CustomerAddress | None:
    """
    Remember a delivery address for the next order (best effort).

    An identical address is not saved twice. Database failures are logged
    and swallowed: the order that produced the address is already committed.
    """
    street = (street or "").strip()
    neighborhood = (neighborhood or "").strip()
    if not street or not neighborhood:
        return None

    try:
        duplicate = db.session.query(CustomerAddress).filter_by(
            customer_id=customer_id,
            street=street,
            number=number,
            neighborhood=neighborhood,
        ).first()
        if duplicate:
            return duplicate

        address = CustomerAddress(
            customer_id=customer_id,
            label=label or "Saved address",
            street=street,
            number=number,
            neighborhood=neighborhood,
            reference=reference,
            postal_code=postal_code,
        )
        db.session.add(address)
        db.session.commit()
        return address
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning(
            "Failed to save delivery address for customer %s", customer_id, exc_info=True
        )
        return None
