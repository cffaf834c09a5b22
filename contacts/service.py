# contacts/service.py
"""
Contact management: CRUD, filters, Peppol flags, notes, activity and merge.

Every query is scoped to the caller's tenant; a contact of another tenant is
reported as missing.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from auth.models import User
from cashflow.models import Bill, Expense, Invoice
from contacts.models import Contact, ContactAddress, ContactNote
from contacts.schemas import AddressData, ContactCreate, ContactUpdate
from domain.enums import ContactType
from domain.validators import is_valid_peppol_id, normalize_vat_number
from utils.exceptions import BadRequest, NotFound
from utils.logging_config import get_logger

logger = get_logger(__name__)

MAX_PAGE_SIZE = 200
DEFAULT_PAGE_SIZE = 50

# Fields copied from a merged contact when empty on the target
MERGE_FILL_FIELDS = (
    "email", "phone", "vat_number", "company_number", "contact_person",
    "default_payment_terms", "default_vat_rate", "peppol_id",
)


@dataclass
class ContactFilters:
    active: Optional[bool] = None
    peppol_enabled: Optional[bool] = None
    contact_type: Optional[ContactType] = None
    search: Optional[str] = None
    limit: int = DEFAULT_PAGE_SIZE
    offset: int = 0


class ContactService:

    def __init__(self, db: Session):
        self.db = db

    # ==================================================
    # QUERIES
    # ==================================================

    def list_contacts(self, tenant_id: int, filters: ContactFilters) -> Tuple[List[Contact], int]:
        if filters.limit < 1 or filters.limit > MAX_PAGE_SIZE:
            raise BadRequest(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if filters.offset < 0:
            raise BadRequest("offset must be >= 0")

        query = self.db.query(Contact).filter(Contact.tenant_id == tenant_id)

        if filters.active is not None:
            query = query.filter(Contact.is_active.is_(filters.active))
        if filters.peppol_enabled is not None:
            query = query.filter(Contact.peppol_enabled.is_(filters.peppol_enabled))
        if filters.contact_type is not None:
            query = query.filter(Contact.contact_type == ContactType(filters.contact_type).value)
        if filters.search:
            pattern = f"%{filters.search.strip().lower()}%"
            query = query.filter(or_(
                func.lower(Contact.name).like(pattern),
                func.lower(Contact.email).like(pattern),
                func.lower(Contact.vat_number).like(pattern),
            ))

        total = query.count()
        items = query.order_by(Contact.name, Contact.id).offset(filters.offset).limit(filters.limit).all()
        return items, total

    def list_customers(self, tenant_id: int) -> List[Contact]:
        return self._by_types(tenant_id, (ContactType.CUSTOMER, ContactType.BOTH))

    def list_vendors(self, tenant_id: int) -> List[Contact]:
        return self._by_types(tenant_id, (ContactType.VENDOR, ContactType.BOTH))

    def get_contact(self, tenant_id: int, contact_id: int) -> Contact:
        contact = self.db.query(Contact).filter(
            Contact.id == contact_id,
            Contact.tenant_id == tenant_id
        ).first()
        if contact is None:
            raise NotFound("Contact not found")
        return contact

    def find_by_vat_or_name(self, tenant_id: int, vat_number: Optional[str], name: Optional[str]) -> Optional[Contact]:
        """Looks a contact up by VAT number first, then by exact name (case-insensitive)."""
        normalized = normalize_vat_number(vat_number)
        if normalized:
            contact = self.db.query(Contact).filter(
                Contact.tenant_id == tenant_id,
                Contact.vat_number == normalized
            ).first()
            if contact is not None:
                return contact
        if name and name.strip():
            return self.db.query(Contact).filter(
                Contact.tenant_id == tenant_id,
                func.lower(Contact.name) == name.strip().lower()
            ).first()
        return None

    def summary(self, tenant_id: int) -> dict:
        contacts = self.db.query(Contact.is_active, Contact.contact_type, Contact.peppol_enabled).filter(
            Contact.tenant_id == tenant_id
        ).all()
        customer_types = (ContactType.CUSTOMER.value, ContactType.BOTH.value)
        vendor_types = (ContactType.VENDOR.value, ContactType.BOTH.value)
        return {
            "total": len(contacts),
            "active": sum(1 for c in contacts if c.is_active),
            "inactive": sum(1 for c in contacts if not c.is_active),
            "customers": sum(1 for c in contacts if c.contact_type in customer_types),
            "vendors": sum(1 for c in contacts if c.contact_type in vendor_types),
            "peppol_enabled": sum(1 for c in contacts if c.peppol_enabled),
        }

    def activity(self, tenant_id: int, contact_id: int) -> dict:
        self.get_contact(tenant_id, contact_id)

        invoice_count, invoice_total, invoice_last = self.db.query(
            func.count(Invoice.id), func.coalesce(func.sum(Invoice.total_amount), 0), func.max(Invoice.issue_date)
        ).filter(Invoice.tenant_id == tenant_id, Invoice.contact_id == contact_id).one()

        bill_count, bill_total, bill_last = self.db.query(
            func.count(Bill.id), func.coalesce(func.sum(Bill.amount), 0), func.max(Bill.issue_date)
        ).filter(Bill.tenant_id == tenant_id, Bill.contact_id == contact_id).one()

        expense_count, expense_total, expense_last = self.db.query(
            func.count(Expense.id), func.coalesce(func.sum(Expense.amount), 0), func.max(Expense.date)
        ).filter(Expense.tenant_id == tenant_id, Expense.contact_id == contact_id).one()

        dates = [d for d in (invoice_last, bill_last, expense_last) if d is not None]
        return {
            "contact_id": contact_id,
            "invoice_count": invoice_count,
            "invoice_total": int(invoice_total),
            "bill_count": bill_count,
            "bill_total": int(bill_total),
            "expense_count": expense_count,
            "expense_total": int(expense_total),
            "last_activity_date": max(dates) if dates else None,
        }

    # ==================================================
    # COMMANDS
    # ==================================================

    def create_contact(self, tenant_id: int, data: ContactCreate, author: Optional[User] = None) -> Contact:
        if data.peppol_enabled:
            self._require_peppol_id(data.peppol_id)

        contact = Contact(
            tenant_id=tenant_id,
            name=data.name.strip(),
            email=data.email,
            phone=data.phone,
            vat_number=normalize_vat_number(data.vat_number),
            company_number=data.company_number,
            contact_person=data.contact_person,
            contact_type=ContactType(data.contact_type).value,
            default_payment_terms=data.default_payment_terms,
            default_vat_rate=data.default_vat_rate,
            peppol_id=data.peppol_id,
            peppol_enabled=data.peppol_enabled,
            tags=list(data.tags),
        )
        contact.addresses = self._build_addresses(data.addresses)
        self.db.add(contact)
        self.db.flush()

        if data.initial_note and data.initial_note.strip():
            self.db.add(self._new_note(tenant_id, contact.id, data.initial_note, author))

        self.db.commit()
        self.db.refresh(contact)
        logger.info("contact_created", tenant_id=tenant_id, contact_id=contact.id)
        return contact

    def create_vendor(self, tenant_id: int, name: str, vat_number: Optional[str] = None) -> Contact:
        """Minimal vendor, used when a document or Peppol bill names an unknown supplier."""
        contact = Contact(
            tenant_id=tenant_id,
            name=name.strip(),
            vat_number=normalize_vat_number(vat_number),
            contact_type=ContactType.VENDOR.value,
            tags=[],
        )
        self.db.add(contact)
        self.db.flush()
        logger.info("vendor_created", tenant_id=tenant_id, contact_id=contact.id)
        return contact

    def update_contact(self, tenant_id: int, contact_id: int, data: ContactUpdate) -> Contact:
        contact = self.get_contact(tenant_id, contact_id)
        changes = data.model_dump(exclude_unset=True)

        addresses = changes.pop("addresses", None)
        if "vat_number" in changes:
            changes["vat_number"] = normalize_vat_number(changes["vat_number"])
        if changes.get("contact_type") is not None:
            changes["contact_type"] = ContactType(changes["contact_type"]).value
        if "name" in changes and changes["name"] is None:
            changes.pop("name")

        for key, value in changes.items():
            setattr(contact, key, value)

        if addresses is not None:
            contact.addresses = self._build_addresses([AddressData(**a) for a in addresses])

        self.db.commit()
        self.db.refresh(contact)
        return contact

    def delete_contact(self, tenant_id: int, contact_id: int) -> None:
        contact = self.get_contact(tenant_id, contact_id)
        if contact.is_system_contact:
            raise BadRequest("System contacts cannot be deleted")

        has_invoices = self.db.query(Invoice.id).filter(Invoice.contact_id == contact_id).first()
        if has_invoices:
            raise BadRequest("Contact has invoices; archive it instead")

        self.db.delete(contact)
        self.db.commit()
        logger.info("contact_deleted", tenant_id=tenant_id, contact_id=contact_id)

    def update_peppol(self, tenant_id: int, contact_id: int, peppol_id: Optional[str], enabled: bool) -> Contact:
        contact = self.get_contact(tenant_id, contact_id)
        if enabled:
            self._require_peppol_id(peppol_id)
        elif peppol_id and not is_valid_peppol_id(peppol_id):
            raise BadRequest("Invalid Peppol participant id", details={"peppol_id": peppol_id})

        contact.peppol_id = peppol_id
        contact.peppol_enabled = enabled
        self.db.commit()
        self.db.refresh(contact)
        return contact

    def merge(self, tenant_id: int, source_id: int, target_id: int, acting_user: Optional[User] = None) -> dict:
        """
        Merges `source` into `target`.

        Invoices, bills, expenses and notes move to the target, the target's
        empty fields are filled from the source, and the source is archived.
        """
        if source_id == target_id:
            raise BadRequest("Cannot merge a contact into itself")

        source = self.get_contact(tenant_id, source_id)
        target = self.get_contact(tenant_id, target_id)

        if source.is_system_contact or target.is_system_contact:
            raise BadRequest("System contacts cannot be merged")
        if source.vat_number and target.vat_number and source.vat_number != target.vat_number:
            raise BadRequest(
                "Contacts have different VAT numbers",
                details={"source_vat": source.vat_number, "target_vat": target.vat_number}
            )

        invoices = self.db.query(Invoice).filter(
            Invoice.tenant_id == tenant_id, Invoice.contact_id == source_id
        ).update({Invoice.contact_id: target_id}, synchronize_session=False)
        bills = self.db.query(Bill).filter(
            Bill.tenant_id == tenant_id, Bill.contact_id == source_id
        ).update({Bill.contact_id: target_id}, synchronize_session=False)
        expenses = self.db.query(Expense).filter(
            Expense.tenant_id == tenant_id, Expense.contact_id == source_id
        ).update({Expense.contact_id: target_id}, synchronize_session=False)
        notes = self.db.query(ContactNote).filter(
            ContactNote.tenant_id == tenant_id, ContactNote.contact_id == source_id
        ).update({ContactNote.contact_id: target_id}, synchronize_session=False)

        for field_name in MERGE_FILL_FIELDS:
            if getattr(target, field_name) in (None, "") and getattr(source, field_name) not in (None, ""):
                setattr(target, field_name, getattr(source, field_name))
        if not target.addresses and source.addresses:
            for address in source.addresses:
                target.addresses.append(ContactAddress(
                    street_line1=address.street_line1,
                    street_line2=address.street_line2,
                    city=address.city,
                    postal_code=address.postal_code,
                    country=address.country,
                    is_default=address.is_default,
                ))
        if source.peppol_enabled and not target.peppol_enabled and target.peppol_id:
            target.peppol_enabled = True

        source.is_active = False
        self.db.add(ContactNote(
            tenant_id=tenant_id,
            contact_id=target_id,
            content=f"Merged contact '{source.name}' (#{source_id}) into this contact.",
            author_id=acting_user.id if acting_user else None,
            author_name="System",
        ))
        self.db.commit()
        # notes relationship was bulk-updated behind the session's back
        self.db.expire_all()

        logger.info("contacts_merged", tenant_id=tenant_id, source=source_id, target=target_id)
        return {
            "source_contact_id": source_id,
            "target_contact_id": target_id,
            "invoices_reassigned": invoices,
            "bills_reassigned": bills,
            "expenses_reassigned": expenses,
            "notes_reassigned": notes,
            "source_archived": True,
        }

    # ==================================================
    # NOTES
    # ==================================================

    def list_notes(self, tenant_id: int, contact_id: int) -> List[ContactNote]:
        self.get_contact(tenant_id, contact_id)
        return self.db.query(ContactNote).filter(
            ContactNote.tenant_id == tenant_id,
            ContactNote.contact_id == contact_id
        ).order_by(ContactNote.created_at.desc(), ContactNote.id.desc()).all()

    def add_note(self, tenant_id: int, contact_id: int, content: str, author: Optional[User] = None) -> ContactNote:
        self.get_contact(tenant_id, contact_id)
        note = self._new_note(tenant_id, contact_id, content, author)
        self.db.add(note)
        self.db.commit()
        self.db.refresh(note)
        return note

    def update_note(self, tenant_id: int, contact_id: int, note_id: int, content: str) -> ContactNote:
        note = self._get_note(tenant_id, contact_id, note_id)
        note.content = content.strip()
        self.db.commit()
        self.db.refresh(note)
        return note

    def delete_note(self, tenant_id: int, contact_id: int, note_id: int) -> None:
        note = self._get_note(tenant_id, contact_id, note_id)
        self.db.delete(note)
        self.db.commit()

    # ==================================================
    # INTERNALS
    # ==================================================

    def _by_types(self, tenant_id: int, types) -> List[Contact]:
        return self.db.query(Contact).filter(
            Contact.tenant_id == tenant_id,
            Contact.is_active.is_(True),
            Contact.contact_type.in_([t.value for t in types])
        ).order_by(Contact.name).all()

    def _get_note(self, tenant_id: int, contact_id: int, note_id: int) -> ContactNote:
        note = self.db.query(ContactNote).filter(
            ContactNote.id == note_id,
            ContactNote.contact_id == contact_id,
            ContactNote.tenant_id == tenant_id
        ).first()
        if note is None:
            raise NotFound("Note not found")
        return note

    @staticmethod
    def _new_note(tenant_id: int, contact_id: int, content: str, author: Optional[User]) -> ContactNote:
        return ContactNote(
            tenant_id=tenant_id,
            contact_id=contact_id,
            content=content.strip(),
            author_id=author.id if author else None,
            author_name=author.full_name if author else None,
        )

    @staticmethod
    def _build_addresses(addresses: List[AddressData]) -> List[ContactAddress]:
        built = [ContactAddress(**a.model_dump()) for a in addresses]
        if built and not any(a.is_default for a in built):
            built[0].is_default = True
        return built

    @staticmethod
    def _require_peppol_id(peppol_id: Optional[str]) -> None:
        if not peppol_id or not is_valid_peppol_id(peppol_id):
            raise BadRequest(
                "A valid Peppol participant id (scheme:identifier) is required to enable Peppol",
                details={"peppol_id": peppol_id}
            )
