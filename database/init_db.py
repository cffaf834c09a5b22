# database/init_db.py
"""
Database initialisation: waits for the server, creates the tables and
applies the column additions create_all cannot do on existing tables.
"""

import logging
import time

from sqlalchemy import inspect, text
from sqlalchemy.exc import OperationalError

from database.connection import Base, engine

# Imported so every table is registered on Base.metadata
from auth.models import Tenant, User, TenantMembership, RefreshToken, PasswordResetToken, TenantInvitation, RevokedAccessToken  # noqa: F401
from tenants.models import TenantSettings, InvoiceNumberSequence  # noqa: F401
from contacts.models import Contact, ContactAddress, ContactNote  # noqa: F401
from cashflow.models import Invoice, InvoiceItem, Bill, Expense, CreditNote, CreditNoteRefund, RefundClaim  # noqa: F401
from peppol.models import PeppolSettings, PeppolTransmission  # noqa: F401
from documents.models import Document, DocumentProcessingRun  # noqa: F401

logger = logging.getLogger(__name__)

# (table, column, DDL type) added by ALTER TABLE when an existing table lacks the column
COLUMN_MIGRATIONS = [
    ("documents", "confirmed_entity_type", "VARCHAR(20)"),
    ("documents", "confirmed_entity_id", "INTEGER"),
    ("invoices", "peppol_status", "VARCHAR(20)"),
]


def wait_for_db(max_retries=10, delay=3):
    """Waits until the database accepts connections"""
    for attempt in range(max_retries):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database connection established")
            return True
        except OperationalError:
            if attempt < max_retries - 1:
                logger.warning(f"Waiting for the database... attempt {attempt + 1}/{max_retries}")
                time.sleep(delay)
            else:
                logger.error(f"Database unreachable after {max_retries} attempts")
                raise
    return False


def create_tables():
    Base.metadata.create_all(bind=engine)
    logger.info("Tables created")


def run_migrations():
    """Adds missing columns to existing tables"""
    inspector = inspect(engine)
    existing_tables = set(inspector.get_table_names())

    with engine.begin() as conn:
        for table, column, ddl_type in COLUMN_MIGRATIONS:
            if table not in existing_tables:
                continue
            columns = {col["name"] for col in inspector.get_columns(table)}
            if column in columns:
                continue
            conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {ddl_type}"))
            logger.info(f"Migration: added {table}.{column}")


def init_database():
    logger.info("Initialising database...")
    wait_for_db()
    create_tables()
    run_migrations()
    logger.info("Database ready")


if __name__ == "__main__":
    init_database()
