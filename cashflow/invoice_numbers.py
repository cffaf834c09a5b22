# cashflow/invoice_numbers.py
"""
Gap-free, per-tenant invoice numbering.

Belgian tax law requires invoice numbers to be sequential and never reused.
Each (tenant, year) pair owns one counter row in `invoice_number_sequences`;
year 0 is the global counter used when yearly reset is off.

Usage:
    generator = InvoiceNumberGenerator(db)
    number = generator.generate(tenant_id)     # "INV-2025-0001", consumes the number
    preview = generator.preview(tenant_id)     # next number, not consumed
"""

from datetime import date
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tenants.models import InvoiceNumberSequence, TenantSettings
from tenants.service import TenantService
from utils.logging_config import get_logger
from utils.timezone import today_local

logger = get_logger(__name__)

GLOBAL_SEQUENCE_YEAR = 0


def format_invoice_number(prefix: str, year: int, number: int, padding: int, include_year: bool) -> str:
    padded = str(number).zfill(padding)
    if include_year:
        return f"{prefix}-{year}-{padded}"
    return f"{prefix}-{padded}"


class InvoiceNumberGenerator:

    def __init__(self, db: Session):
        self.db = db

    def generate(self, tenant_id: int, today: Optional[date] = None) -> str:
        """
        Consumes and returns the next invoice number.

        Only flushes; the number becomes permanent when the caller commits
        the transaction that also stores the invoice.
        """
        settings = TenantService(self.db).get_settings(tenant_id)
        today = today or today_local(settings.invoice_timezone)

        sequence_year = today.year if settings.invoice_yearly_reset else GLOBAL_SEQUENCE_YEAR
        number = self.get_and_increment(tenant_id, sequence_year)

        formatted = self._format(settings, today.year, number)
        logger.info("invoice_number_generated", tenant_id=tenant_id, number=formatted)
        return formatted

    def preview(self, tenant_id: int, today: Optional[date] = None) -> str:
        settings = TenantService(self.db).get_settings(tenant_id)
        today = today or today_local(settings.invoice_timezone)

        sequence_year = today.year if settings.invoice_yearly_reset else GLOBAL_SEQUENCE_YEAR
        sequence = self._sequence(tenant_id, sequence_year)
        last_number = sequence.last_number if sequence else 0
        return self._format(settings, today.year, last_number + 1)

    def get_and_increment(self, tenant_id: int, year: int) -> int:
        """Atomically increments the (tenant, year) counter and returns the new value."""
        sequence = self._sequence(tenant_id, year, lock=True)

        if sequence is None:
            try:
                with self.db.begin_nested():
                    self.db.add(InvoiceNumberSequence(tenant_id=tenant_id, year=year, last_number=0))
            except IntegrityError:
                # another transaction created the row first
                logger.debug("invoice_sequence_race", tenant_id=tenant_id, year=year)
            sequence = self._sequence(tenant_id, year, lock=True)

        sequence.last_number += 1
        self.db.flush()
        return sequence.last_number

    def _sequence(self, tenant_id: int, year: int, lock: bool = False) -> Optional[InvoiceNumberSequence]:
        query = self.db.query(InvoiceNumberSequence).filter(
            InvoiceNumberSequence.tenant_id == tenant_id,
            InvoiceNumberSequence.year == year
        )
        if lock:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def _format(settings: TenantSettings, year: int, number: int) -> str:
        return format_invoice_number(
            settings.invoice_prefix,
            year,
            number,
            settings.invoice_padding,
            settings.invoice_include_year,
        )
