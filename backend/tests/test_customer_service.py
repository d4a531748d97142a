import pytest

from orderdesk.models import Customer, CustomerAddress
from orderdesk.services import customer_service
from orderdesk.services.customer_service import CustomerError


def test_identify_creates_then_finds(db_session, store):
    created, was_created = customer_service.identify_customer(store.id, "(11) 97777-6666", "Joao")
    found, found_created = customer_service.identify_customer(store.id, "11 977776666")

    assert was_created is True
    assert found_created is False
    assert found.id == created.id
    assert created.phone == "11977776666"
    assert created.points == 0


def test_same_phone_in_another_store_is_another_customer(db_session, store, other_store, customer):
    other, created = customer_service.identify_customer(other_store.id, customer.phone, "Maria")

    assert created is True
    assert other.id != customer.id


def test_identify_requires_name_for_new_customer(db_session, store):
    with pytest.raises(CustomerError):
        customer_service.identify_customer(store.id, "11977776666")
    assert db_session.query(Customer).count() == 0


def test_normalize_phone_rejects_short_numbers():
    with pytest.raises(CustomerError):
        customer_service.normalize_phone("12-34")
    assert customer_service.normalize_phone("+55 (11) 98888-7777") == "5511988887777"


def test_find_by_phone(db_session, store, customer):
    assert customer_service.find_by_phone(store.id, "(11) 98888-7777").id == customer.id
    assert customer_service.find_by_phone(store.id, "11900000000") is None


def test_profile_includes_tier(db_session, customer):
    profile = customer_service.customer_profile(customer)

    assert profile["points"] == 12
    assert profile["tier"] == "Prata"


def test_save_address_deduplicates(db_session, customer):
    first = customer_service.save_address(customer.id, street="Rua A", number="10", neighborhood="Centro")
    again = customer_service.save_address(customer.id, street=" Rua A ", number="10", neighborhood="Centro")
    other = customer_service.save_address(customer.id, street="Rua B", number="5", neighborhood="Centro")

    assert again.id == first.id
    assert other.id != first.id
    assert [a.street for a in customer_service.list_addresses(customer.id)] == ["Rua B", "Rua A"]


def test_save_address_ignores_incomplete_address(db_session, customer):
    assert customer_service.save_address(customer.id, street="", neighborhood="Centro") is None
    assert db_session.query(CustomerAddress).count() == 0
