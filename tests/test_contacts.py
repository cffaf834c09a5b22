# tests/test_contacts.py
"""
Tests for contact management: filters, VAT lookup, Peppol flags, notes and merge.
"""

from datetime import date

import pytest

from auth.permissions import UserRole
from cashflow.schemas import BillCreate, InvoiceCreate, InvoiceItemData
from cashflow.service import BillService, InvoiceService
from contacts.models import Contact, ContactNote
from contacts.schemas import AddressData, ContactCreate, ContactUpdate
from contacts.service import ContactFilters, ContactService
from domain.enums import ContactType
from utils.exceptions import BadRequest, NotFound

from tests.conftest import add_member, make_tenant, make_user, token_for


def create(db, tenant, name, **kwargs) -> Contact:
    return ContactService(db).create_contact(tenant.id, ContactCreate(name=name, **kwargs))


@pytest.fixture
def contacts(db, tenant):
    return {
        "proximus": create(db, tenant, "Proximus NV", vat_number="be 0202.239.951",
                           contact_type=ContactType.VENDOR, email="billing@proximus.be"),
        "client": create(db, tenant, "Brouwerij De Koninck", contact_type=ContactType.CUSTOMER),
        "both": create(db, tenant, "Atelier Both", contact_type=ContactType.BOTH,
                       peppol_id="0208:BE0123456749", peppol_enabled=True),
    }


class TestCreateContact:

    def test_vat_number_is_normalized(self, db, contacts):
        assert contacts["proximus"].vat_number == "BE0202239951"

    def test_initial_note_and_author(self, db, tenant, owner):
        contact = ContactService(db).create_contact(
            tenant.id, ContactCreate(name="Studio Noord", initialNote="Met at the fair "), author=owner
        )

        notes = ContactService(db).list_notes(tenant.id, contact.id)
        assert [(n.content, n.author_name) for n in notes] == [("Met at the fair", "Olivia Owner")]

    def test_first_address_becomes_default(self, db, tenant):
        contact = create(db, tenant, "Studio Noord", addresses=[
            AddressData(street_line1="Meir 1", city="Antwerpen", country="BE"),
            AddressData(street_line1="Rue Neuve 2", city="Bruxelles", country="BE"),
        ])
        assert [a.is_default for a in contact.addresses] == [True, False]

    def test_peppol_requires_valid_id(self, db, tenant):
        with pytest.raises(BadRequest):
            create(db, tenant, "No Id", peppol_enabled=True)
        with pytest.raises(BadRequest):
            create(db, tenant, "Bad Id", peppol_id="0208:12345", peppol_enabled=True)


class TestQueries:

    def test_list_is_ordered_by_name(self, db, tenant, contacts):
        items, total = ContactService(db).list_contacts(tenant.id, ContactFilters())

        assert total == 3
        assert [c.name for c in items] == ["Atelier Both", "Brouwerij De Koninck", "Proximus NV"]

    def test_filters(self, db, tenant, contacts):
        service = ContactService(db)

        items, _ = service.list_contacts(tenant.id, ContactFilters(peppol_enabled=True))
        assert [c.name for c in items] == ["Atelier Both"]

        items, _ = service.list_contacts(tenant.id, ContactFilters(contact_type=ContactType.VENDOR))
        assert [c.name for c in items] == ["Proximus NV"]

        items, _ = service.list_contacts(tenant.id, ContactFilters(search="PROXIMUS.BE"))
        assert [c.name for c in items] == ["Proximus NV"]

    def test_pagination(self, db, tenant, contacts):
        items, total = ContactService(db).list_contacts(tenant.id, ContactFilters(limit=1, offset=1))
        assert total == 3
        assert [c.name for c in items] == ["Brouwerij De Koninck"]

    @pytest.mark.parametrize("limit,offset", [(0, 0), (201, 0), (10, -1)])
    def test_invalid_page(self, db, tenant, limit, offset):
        with pytest.raises(BadRequest):
            ContactService(db).list_contacts(tenant.id, ContactFilters(limit=limit, offset=offset))

    def test_customers_and_vendors_include_both(self, db, tenant, contacts):
        service = ContactService(db)
        assert [c.name for c in service.list_customers(tenant.id)] == ["Atelier Both", "Brouwerij De Koninck"]
        assert [c.name for c in service.list_vendors(tenant.id)] == ["Atelier Both", "Proximus NV"]

    def test_find_by_vat_then_name(self, db, tenant, contacts):
        """VAT number is matched first, then the name case insensitively."""
        service = ContactService(db)
        assert service.find_by_vat_or_name(tenant.id, "BE 0202 239 951", "Other name").name == "Proximus NV"
        assert service.find_by_vat_or_name(tenant.id, None, "  brouwerij de koninck ").name == "Brouwerij De Koninck"
        assert service.find_by_vat_or_name(tenant.id, "BE0999999999", "Unknown") is None

    def test_other_tenant_is_not_found(self, db, contacts):
        other = make_tenant(db, "Other BV", "BE0202239951")
        db.commit()
        with pytest.raises(NotFound):
            ContactService(db).get_contact(other.id, contacts["client"].id)

    def test_summary(self, db, tenant, contacts):
        ContactService(db).update_contact(tenant.id, contacts["client"].id, ContactUpdate(is_active=False))

        assert ContactService(db).summary(tenant.id) == {
            "total": 3,
            "active": 2,
            "inactive": 1,
            "customers": 2,
            "vendors": 2,
            "peppol_enabled": 1,
        }

    def test_activity(self, db, tenant, contacts):
        vendor = contacts["proximus"]
        BillService(db).create_bill(tenant.id, BillCreate(
            contact_id=vendor.id, supplier_name="Proximus NV", issue_date=date(2024, 3, 1), amount=6050
        ))

        activity = ContactService(db).activity(tenant.id, vendor.id)

        assert activity["bill_count"] == 1
        assert activity["bill_total"] == 6050
        assert activity["invoice_count"] == 0
        assert activity["last_activity_date"] == date(2024, 3, 1)


class TestCommands:

    def test_partial_update(self, db, tenant, contacts):
        contact = ContactService(db).update_contact(
            tenant.id, contacts["client"].id, ContactUpdate(phone="+32 3 123 45 67", vat_number="be0202.239.951")
        )
        assert contact.phone == "+32 3 123 45 67"
        assert contact.vat_number == "BE0202239951"
        assert contact.name == "Brouwerij De Koninck"

    def test_update_peppol(self, db, tenant, contacts):
        service = ContactService(db)
        contact = service.update_peppol(tenant.id, contacts["client"].id, "9925:BE0202239951", True)
        assert contact.peppol_enabled

        with pytest.raises(BadRequest):
            service.update_peppol(tenant.id, contacts["client"].id, "not-a-peppol-id", False)

    def test_system_contacts_cannot_be_deleted(self, db, tenant):
        system = Contact(tenant_id=tenant.id, name="Unknown supplier", is_system_contact=True)
        db.add(system)
        db.commit()

        with pytest.raises(BadRequest):
            ContactService(db).delete_contact(tenant.id, system.id)

    def test_contact_with_invoices_cannot_be_deleted(self, db, tenant, contacts):
        customer = contacts["client"]
        InvoiceService(db).create_invoice(tenant.id, InvoiceCreate(
            contact_id=customer.id, items=[InvoiceItemData(description="Consulting", unit_price=10000)]
        ))

        with pytest.raises(BadRequest):
            ContactService(db).delete_contact(tenant.id, customer.id)

    def test_delete(self, db, tenant, contacts):
        ContactService(db).delete_contact(tenant.id, contacts["client"].id)
        with pytest.raises(NotFound):
            ContactService(db).get_contact(tenant.id, contacts["client"].id)


class TestMerge:

    def test_merge_moves_records_and_archives_source(self, db, tenant, owner, contacts):
        """Bills and notes move to the target and the source is archived."""
        service = ContactService(db)
        source = create(db, tenant, "Proximus", contact_type=ContactType.VENDOR, phone="+32 2 202 41 11")
        service.add_note(tenant.id, source.id, "Duplicate from a scanned bill")
        BillService(db).create_bill(tenant.id, BillCreate(
            contact_id=source.id, supplier_name="Proximus", issue_date=date(2024, 2, 1), amount=1000
        ))

        result = service.merge(tenant.id, source.id, contacts["proximus"].id, acting_user=owner)

        assert result == {
            "source_contact_id": source.id,
            "target_contact_id": contacts["proximus"].id,
            "invoices_reassigned": 0,
            "bills_reassigned": 1,
            "expenses_reassigned": 0,
            "notes_reassigned": 1,
            "source_archived": True,
        }
        target = service.get_contact(tenant.id, contacts["proximus"].id)
        assert target.phone == "+32 2 202 41 11"
        assert service.get_contact(tenant.id, source.id).is_active is False

        notes = db.query(ContactNote).filter(ContactNote.contact_id == target.id).all()
        assert sorted(n.author_name or "" for n in notes) == ["", "System"]

    def test_merge_into_self(self, db, tenant, contacts):
        with pytest.raises(BadRequest):
            ContactService(db).merge(tenant.id, contacts["client"].id, contacts["client"].id)

    def test_different_vat_numbers(self, db, tenant, contacts):
        other = create(db, tenant, "Proximus Luxembourg", vat_number="LU12345613")
        with pytest.raises(BadRequest):
            ContactService(db).merge(tenant.id, other.id, contacts["proximus"].id)


class TestNotes:

    def test_note_lifecycle(self, db, tenant, contacts):
        service = ContactService(db)
        contact_id = contacts["client"].id

        note = service.add_note(tenant.id, contact_id, "Prefers Peppol")
        service.update_note(tenant.id, contact_id, note.id, "Prefers e-mail")
        assert [n.content for n in service.list_notes(tenant.id, contact_id)] == ["Prefers e-mail"]

        service.delete_note(tenant.id, contact_id, note.id)
        assert service.list_notes(tenant.id, contact_id) == []

    def test_note_of_other_contact(self, db, tenant, contacts):
        service = ContactService(db)
        note = service.add_note(tenant.id, contacts["client"].id, "Hello")
        with pytest.raises(NotFound):
            service.update_note(tenant.id, contacts["proximus"].id, note.id, "Moved?")


class TestContactRoutes:

    def test_create_and_get(self, client, auth_headers):
        response = client.post("/api/v1/contacts", json={
            "name": "Studio Noord", "vat_number": "BE 0202.239.951", "contact_type": "Vendor"
        }, headers=auth_headers)

        assert response.status_code == 201
        body = response.json()
        assert body["vat_number"] == "BE0202239951"

        fetched = client.get(f"/api/v1/contacts/{body['id']}", headers=auth_headers)
        assert fetched.status_code == 200
        assert fetched.json()["name"] == "Studio Noord"

    def test_list_with_filters(self, client, auth_headers, contacts):
        response = client.get("/api/v1/contacts", params={"contactType": "Vendor"}, headers=auth_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert body["items"][0]["name"] == "Proximus NV"

    def test_invalid_limit(self, client, auth_headers):
        response = client.get("/api/v1/contacts", params={"limit": 500}, headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["error"] == "BAD_REQUEST"

    def test_unknown_contact(self, client, auth_headers):
        response = client.get("/api/v1/contacts/999", headers=auth_headers)
        assert response.status_code == 404

    def test_viewer_cannot_create(self, db, client, tenant):
        viewer = make_user(db, "viewer@acme.be")
        add_member(db, tenant, viewer, UserRole.VIEWER)
        db.commit()
        headers = {"Authorization": f"Bearer {token_for(viewer, tenant, UserRole.VIEWER)}"}

        assert client.get("/api/v1/contacts", headers=headers).status_code == 200
        assert client.post("/api/v1/contacts", json={"name": "X"}, headers=headers).status_code == 403
