# tenants/service.py
"""
Tenant profile and settings.
"""

from typing import Optional

import pytz
from sqlalchemy.orm import Session

from auth.models import Tenant
from domain.validators import is_valid_iban, normalize_iban, normalize_vat_number
from tenants.models import TenantSettings
from tenants.schemas import TenantSettingsUpdate
from utils.exceptions import NotFound, ValidationError
from utils.logging_config import get_logger

logger = get_logger(__name__)


class TenantService:

    def __init__(self, db: Session):
        self.db = db

    def get_tenant(self, tenant_id: int) -> Tenant:
        tenant = self.db.get(Tenant, tenant_id)
        if tenant is None:
            raise NotFound("Tenant not found")
        return tenant

    def get_settings(self, tenant_id: int) -> TenantSettings:
        """Returns the settings row, creating the defaults on first access."""
        settings = self.db.query(TenantSettings).filter(TenantSettings.tenant_id == tenant_id).first()
        if settings is None:
            tenant = self.get_tenant(tenant_id)
            settings = TenantSettings(
                tenant_id=tenant_id,
                company_name=tenant.legal_name or tenant.name,
                company_vat_number=tenant.vat_number,
            )
            self.db.add(settings)
            self.db.commit()
            self.db.refresh(settings)
        return settings

    def update_settings(self, tenant_id: int, data: TenantSettingsUpdate) -> TenantSettings:
        settings = self.get_settings(tenant_id)
        values = data.model_dump()

        iban = values.get("company_iban")
        if iban:
            if not is_valid_iban(iban):
                raise ValidationError("Invalid IBAN", details={"field": "company_iban"})
            values["company_iban"] = normalize_iban(iban)

        if values.get("company_vat_number"):
            values["company_vat_number"] = normalize_vat_number(values["company_vat_number"])

        if values["invoice_timezone"] not in pytz.all_timezones_set:
            raise ValidationError("Unknown timezone", details={"field": "invoice_timezone"})

        for key, value in values.items():
            setattr(settings, key, value)

        self.db.commit()
        self.db.refresh(settings)
        logger.info("tenant_settings_updated", tenant_id=tenant_id)
        return settings


def get_settings_or_none(db: Session, tenant_id: int) -> Optional[TenantSettings]:
    return db.query(TenantSettings).filter(TenantSettings.tenant_id == tenant_id).first()
