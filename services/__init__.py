# services/__init__.py
"""
Shared services for the Dokus API
"""

from services.email_service import EmailService, get_email_service

__all__ = [
    "EmailService",
    "get_email_service",
]
