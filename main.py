# main.py
"""
Dokus API - main FastAPI application

Modules:
- Identity, workspaces and team management
- Contacts
- Cashflow: invoices, bills, expenses and overview
- Peppol e-invoicing (Recommand access point)
- Documents with AI extraction

Every route under /api/v1 is authenticated with JWT bearer tokens.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded

from config import CORS_ORIGINS, DOCUMENT_PROCESSING_ENABLED, ENV, OPENROUTER_API_KEY, PEPPOL_POLLING_ENABLED
from database.init_db import init_database
from middleware import RequestIDMiddleware
from utils.exceptions import register_exception_handlers
from utils.logging_config import setup_logging
from utils.rate_limit import limiter, rate_limit_exceeded_handler

from auth.router import router as auth_router
from auth.team_router import router as team_router
from tenants.router import router as tenants_router
from contacts.router import router as contacts_router
from cashflow.router import bills_router, cashflow_router, credit_notes_router, expenses_router, invoices_router
from peppol.router import router as peppol_router
from documents.router import router as documents_router

from peppol.worker import PeppolPollingWorker
from documents.worker import DocumentProcessingWorker

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifecycle.
    Startup: logging, database, background workers. Shutdown: stops the workers.
    """
    setup_logging()
    logger.info(f"Starting Dokus API ({ENV})")
    init_database()

    workers = []
    if PEPPOL_POLLING_ENABLED:
        workers.append(PeppolPollingWorker())
    if DOCUMENT_PROCESSING_ENABLED:
        workers.append(DocumentProcessingWorker())
    for worker in workers:
        worker.start()

    yield

    for worker in workers:
        await worker.stop()
    logger.info("Dokus API stopped")


app = FastAPI(
    title="Dokus API",
    description="Invoicing, bookkeeping documents and Peppol e-invoicing for Belgian freelancers",
    version="1.0.0",
    lifespan=lifespan
)

# Rate limiting (slowapi)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

register_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=CORS_ORIGINS != ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestIDMiddleware)


# ==================================================
# HEALTH
# ==================================================

@app.get("/health")
async def health_check():
    """Health check for monitoring"""
    return {
        "status": "ok",
        "service": "dokus",
        "env": ENV,
        "has_openrouter_key": bool(OPENROUTER_API_KEY),
        "peppol_polling": PEPPOL_POLLING_ENABLED,
        "document_processing": DOCUMENT_PROCESSING_ENABLED,
    }


# ==================================================
# ROUTERS
# ==================================================

app.include_router(auth_router)
app.include_router(team_router)
app.include_router(tenants_router)
app.include_router(contacts_router)

app.include_router(invoices_router)
app.include_router(bills_router)
app.include_router(expenses_router)
app.include_router(credit_notes_router)
app.include_router(cashflow_router)

app.include_router(peppol_router)
app.include_router(documents_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
