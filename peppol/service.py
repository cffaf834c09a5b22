# peppol/service.py
"""
Peppol workflows: settings, outbound invoices and inbox polling.

Sending validates the invoice, logs a transmission, maps the invoice to the
Recommand payload and records the provider's answer. Polling imports each
unread inbox document as a Bill; a failure on one document is stored on its
transmission and retried on the next poll without blocking the others.
"""

import json
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

import httpx
from sqlalchemy.orm import Session

from auth.models import Tenant
from cashflow.models import Bill, Invoice
from cashflow.schemas import BillCreate
from cashflow.service import BillService, InvoiceService
from config import PEPPOL_TEST_MODE
from contacts.models import Contact
from contacts.service import ContactService
from domain.enums import InvoiceStatus, PeppolDirection, PeppolStatus
from domain.validators import is_valid_peppol_id
from peppol import mapper
from peppol.models import PeppolSettings, PeppolTransmission
from peppol.provider import RecommandApiError, RecommandCredentials, RecommandProvider, VerifyResult
from peppol.validator import PeppolValidator, ValidationResult
from tenants.service import get_settings_or_none
from utils.exceptions import BadRequest, ExternalServiceError, NotFound
from utils.logging_config import get_logger
from utils.timezone import now_utc

logger = get_logger(__name__)

# (tenant_id, bill data) -> persisted Bill
CreateBillCallback = Callable[[int, BillCreate], Bill]
ProviderFactory = Callable[[RecommandCredentials], RecommandProvider]


@dataclass
class PollResult:
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    bill_ids: List[int] = field(default_factory=list)


class PeppolService:

    def __init__(self, db: Session, provider_factory: ProviderFactory = RecommandProvider,
                 validator: Optional[PeppolValidator] = None):
        self.db = db
        self.provider_factory = provider_factory
        self.validator = validator or PeppolValidator()

    # ==================================================
    # SETTINGS
    # ==================================================

    def get_settings(self, tenant_id: int) -> Optional[PeppolSettings]:
        return self.db.query(PeppolSettings).filter(PeppolSettings.tenant_id == tenant_id).first()

    def save_settings(self, tenant_id: int, company_id: str, api_key: str, api_secret: str,
                      peppol_id: str, is_enabled: bool, test_mode: bool) -> PeppolSettings:
        if not is_valid_peppol_id(peppol_id):
            raise BadRequest("Invalid Peppol participant id", details={"peppol_id": peppol_id})

        settings = self.get_settings(tenant_id)
        if settings is None:
            settings = PeppolSettings(tenant_id=tenant_id)
            self.db.add(settings)

        settings.company_id = company_id.strip()
        settings.api_key = api_key
        settings.api_secret = api_secret
        settings.peppol_id = peppol_id.strip()
        settings.is_enabled = is_enabled
        settings.test_mode = test_mode
        self.db.commit()
        self.db.refresh(settings)
        logger.info("peppol_settings_saved", tenant_id=tenant_id, enabled=is_enabled, test_mode=test_mode)
        return settings

    def delete_settings(self, tenant_id: int) -> None:
        settings = self.get_settings(tenant_id)
        if settings is None:
            raise NotFound("Peppol is not configured")
        self.db.delete(settings)
        self.db.commit()

    async def test_connection(self, tenant_id: int) -> bool:
        return await self._provider(tenant_id).test_connection()

    # ==================================================
    # OUTBOUND
    # ==================================================

    def validate_invoice(self, tenant_id: int, invoice_id: int) -> ValidationResult:
        invoice, contact, tenant = self._load_invoice(tenant_id, invoice_id)
        return self.validator.validate_for_sending(
            invoice, contact, tenant, get_settings_or_none(self.db, tenant_id), self.get_settings(tenant_id)
        )

    async def verify_recipient(self, tenant_id: int, peppol_id: str) -> VerifyResult:
        if not is_valid_peppol_id(peppol_id):
            return VerifyResult(registered=False, participant_id=peppol_id)
        try:
            return await self._provider(tenant_id).verify_recipient(peppol_id)
        except (RecommandApiError, httpx.HTTPError) as e:
            raise ExternalServiceError(f"Peppol verification failed: {e}")

    async def send_invoice(self, tenant_id: int, invoice_id: int) -> PeppolTransmission:
        invoice, contact, tenant = self._load_invoice(tenant_id, invoice_id)
        settings = get_settings_or_none(self.db, tenant_id)
        peppol_settings = self.get_settings(tenant_id)

        validation = self.validator.validate_for_sending(invoice, contact, tenant, settings, peppol_settings)
        if not validation.is_valid:
            raise BadRequest("Invoice is not ready for Peppol", details=validation.to_dict())

        transmission = PeppolTransmission(
            tenant_id=tenant_id,
            direction=PeppolDirection.OUTBOUND.value,
            document_type="invoice",
            status=PeppolStatus.PENDING.value,
            invoice_id=invoice.id,
            recipient_peppol_id=contact.peppol_id,
            sender_peppol_id=peppol_settings.peppol_id,
        )
        self.db.add(transmission)
        self.db.commit()

        payload = mapper.to_recommand_payload(mapper.to_send_request(invoice, contact, tenant, settings))
        transmission.raw_request = json.dumps(payload)

        try:
            result = await self._provider_for(peppol_settings).send_document(payload)
        except (RecommandApiError, httpx.HTTPError) as e:
            transmission.status = PeppolStatus.FAILED.value
            transmission.error_message = str(e)
            invoice.peppol_status = PeppolStatus.FAILED.value
            self.db.commit()
            logger.error("peppol_send_failed", tenant_id=tenant_id, invoice_id=invoice.id, error=str(e))
            return transmission

        transmission.raw_response = result.raw_response
        if result.success:
            now = now_utc()
            transmission.status = PeppolStatus.SENT.value
            transmission.external_document_id = result.external_document_id
            transmission.transmitted_at = now
            invoice.peppol_id = result.external_document_id
            invoice.peppol_sent_at = now
            invoice.peppol_status = PeppolStatus.SENT.value
            if invoice.status == InvoiceStatus.DRAFT.value:
                invoice.status = InvoiceStatus.SENT.value
            logger.info("peppol_invoice_sent", tenant_id=tenant_id, invoice_id=invoice.id,
                        external_id=result.external_document_id)
        else:
            transmission.status = PeppolStatus.FAILED.value
            transmission.error_message = result.error_message
            invoice.peppol_status = PeppolStatus.FAILED.value
            logger.warning("peppol_invoice_rejected", tenant_id=tenant_id, invoice_id=invoice.id,
                           error=result.error_message)

        self.db.commit()
        self.db.refresh(transmission)
        return transmission

    # ==================================================
    # INBOUND
    # ==================================================

    async def poll_inbox(self, tenant_id: int, create_bill: Optional[CreateBillCallback] = None) -> PollResult:
        peppol_settings = self.get_settings(tenant_id)
        if peppol_settings is None or not peppol_settings.is_enabled:
            raise BadRequest("Peppol is not enabled for this workspace")

        create_bill = create_bill or self._default_create_bill
        provider = self._provider_for(peppol_settings)
        try:
            inbox = await provider.get_inbox()
        except (RecommandApiError, httpx.HTTPError) as e:
            raise ExternalServiceError(f"Could not fetch the Peppol inbox: {e}")

        logger.info("peppol_inbox_fetched", tenant_id=tenant_id, count=len(inbox))
        result = PollResult()

        for item in inbox:
            validation = self.validator.validate_incoming(item.id, item.sender_peppol_id)
            if not validation.is_valid:
                logger.warning("peppol_inbox_item_invalid", tenant_id=tenant_id, item_id=item.id,
                               errors=[e.code for e in validation.errors])
                result.skipped += 1
                continue

            transmission = self._inbound_transmission(tenant_id, item.id)
            if transmission is not None and transmission.status == PeppolStatus.DELIVERED.value:
                # imported earlier but the read flag did not stick
                await self._mark_read(provider, item.id)
                result.skipped += 1
                continue

            if transmission is None:
                transmission = PeppolTransmission(
                    tenant_id=tenant_id,
                    direction=PeppolDirection.INBOUND.value,
                    document_type="invoice",
                    status=PeppolStatus.PENDING.value,
                    external_document_id=item.id,
                    sender_peppol_id=item.sender_peppol_id,
                    recipient_peppol_id=peppol_settings.peppol_id,
                )
                self.db.add(transmission)
                self.db.commit()

            try:
                raw = await provider.get_document(item.id)
                transmission.raw_response = json.dumps(raw)
                document = mapper.PeppolReceivedDocument.from_recommand(raw)
                bill_data = mapper.to_create_bill(document, item.sender_peppol_id)
                bill = create_bill(tenant_id, bill_data)

                bill.peppol_transmission_id = transmission.id
                transmission.bill_id = bill.id
                transmission.status = PeppolStatus.DELIVERED.value
                transmission.error_message = None
                transmission.transmitted_at = now_utc()
                self.db.commit()
            except Exception as e:
                self.db.rollback()
                transmission = self.db.get(PeppolTransmission, transmission.id)
                transmission.status = PeppolStatus.FAILED.value
                transmission.error_message = str(e) or e.__class__.__name__
                self.db.commit()
                result.failed += 1
                logger.error("peppol_inbox_item_failed", tenant_id=tenant_id, item_id=item.id, error=str(e))
                continue

            await self._mark_read(provider, item.id)
            result.processed += 1
            result.bill_ids.append(bill.id)
            logger.info("peppol_document_imported", tenant_id=tenant_id, item_id=item.id, bill_id=bill.id)

        return result

    # ==================================================
    # TRANSMISSIONS
    # ==================================================

    def list_transmissions(
        self,
        tenant_id: int,
        direction: Optional[PeppolDirection] = None,
        status: Optional[PeppolStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[PeppolTransmission], int]:
        if limit < 1 or limit > 200:
            raise BadRequest("limit must be between 1 and 200")
        if offset < 0:
            raise BadRequest("offset must be >= 0")

        query = self.db.query(PeppolTransmission).filter(PeppolTransmission.tenant_id == tenant_id)
        if direction is not None:
            query = query.filter(PeppolTransmission.direction == PeppolDirection(direction).value)
        if status is not None:
            query = query.filter(PeppolTransmission.status == PeppolStatus(status).value)

        total = query.count()
        items = query.order_by(PeppolTransmission.created_at.desc(), PeppolTransmission.id.desc()) \
            .offset(offset).limit(limit).all()
        return items, total

    def get_transmission_by_invoice_id(self, tenant_id: int, invoice_id: int) -> Optional[PeppolTransmission]:
        """Latest outbound transmission of an invoice."""
        return self.db.query(PeppolTransmission).filter(
            PeppolTransmission.tenant_id == tenant_id,
            PeppolTransmission.invoice_id == invoice_id,
            PeppolTransmission.direction == PeppolDirection.OUTBOUND.value
        ).order_by(PeppolTransmission.id.desc()).first()

    # ==================================================
    # INTERNALS
    # ==================================================

    def _load_invoice(self, tenant_id: int, invoice_id: int) -> Tuple[Invoice, Contact, Tenant]:
        invoice = InvoiceService(self.db).get_invoice(tenant_id, invoice_id)
        contact = self.db.get(Contact, invoice.contact_id)
        tenant = self.db.get(Tenant, tenant_id)
        return invoice, contact, tenant

    def _inbound_transmission(self, tenant_id: int, external_id: str) -> Optional[PeppolTransmission]:
        return self.db.query(PeppolTransmission).filter(
            PeppolTransmission.tenant_id == tenant_id,
            PeppolTransmission.direction == PeppolDirection.INBOUND.value,
            PeppolTransmission.external_document_id == external_id
        ).order_by(PeppolTransmission.id.desc()).first()

    def _default_create_bill(self, tenant_id: int, data: BillCreate) -> Bill:
        contact = ContactService(self.db).find_by_vat_or_name(tenant_id, data.supplier_vat_number, data.supplier_name)
        if contact is not None:
            data = data.model_copy(update={"contact_id": contact.id})
        return BillService(self.db).create_bill(tenant_id, data, commit=False)

    def _provider(self, tenant_id: int) -> RecommandProvider:
        settings = self.get_settings(tenant_id)
        if settings is None:
            raise BadRequest("Peppol is not configured")
        return self._provider_for(settings)

    def _provider_for(self, settings: PeppolSettings) -> RecommandProvider:
        return self.provider_factory(RecommandCredentials(
            company_id=settings.company_id,
            api_key=settings.api_key,
            api_secret=settings.api_secret,
            test_mode=settings.test_mode or PEPPOL_TEST_MODE,
        ))

    @staticmethod
    async def _mark_read(provider: RecommandProvider, document_id: str) -> None:
        try:
            await provider.mark_as_read(document_id)
        except (RecommandApiError, httpx.HTTPError) as e:
            logger.warning("peppol_mark_read_failed", document_id=document_id, error=str(e))
