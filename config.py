# config.py
# -*- coding: utf-8 -*-
"""
Centralised Dokus settings
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Loads environment variables from .env when present
load_dotenv()

# ==================================================
# ENVIRONMENT
# ==================================================
ENV = os.getenv("ENV", "development").lower()
IS_PRODUCTION = ENV == "production"
IS_TEST = ENV == "test"

# ==================================================
# DATABASE
# ==================================================
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./dokus.db")

# Managed Postgres hosts hand out postgres:// but SQLAlchemy needs postgresql://
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

# ==================================================
# JWT AUTHENTICATION
# ==================================================
# WARNING: always set SECRET_KEY through the environment in production
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings
    warnings.warn("SECRET_KEY not set! Using a temporary key. SET IT IN PRODUCTION!", RuntimeWarning)
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"

ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
REFRESH_TOKEN_EXPIRE_DAYS = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "30"))
JWT_ISSUER = os.getenv("JWT_ISSUER", "dokus")
JWT_AUDIENCE = os.getenv("JWT_AUDIENCE", "dokus-api")

# Sessions and password recovery
MAX_CONCURRENT_SESSIONS = int(os.getenv("MAX_CONCURRENT_SESSIONS", "5"))
PASSWORD_RESET_EXPIRE_HOURS = int(os.getenv("PASSWORD_RESET_EXPIRE_HOURS", "1"))
INVITATION_EXPIRE_DAYS = int(os.getenv("INVITATION_EXPIRE_DAYS", "30"))

# Login brute-force protection
MAX_LOGIN_ATTEMPTS = int(os.getenv("MAX_LOGIN_ATTEMPTS", "5"))
LOGIN_LOCKOUT_MINUTES = int(os.getenv("LOGIN_LOCKOUT_MINUTES", "15"))

# ==================================================
# AI (OpenRouter)
# ==================================================
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY", "")
OPENROUTER_ENDPOINT = os.getenv("OPENROUTER_ENDPOINT", "https://openrouter.ai/api/v1/chat/completions")
AI_FAST_MODEL = os.getenv("AI_FAST_MODEL", "google/gemini-2.5-flash-lite")
AI_EXPERT_MODEL = os.getenv("AI_EXPERT_MODEL", "google/gemini-2.5-pro")
AI_MAX_RETRIES = int(os.getenv("AI_MAX_RETRIES", "2"))
AI_MIN_CLASSIFICATION_CONFIDENCE = float(os.getenv("AI_MIN_CLASSIFICATION_CONFIDENCE", "0.3"))
DOCUMENT_PROCESSING_INTERVAL_SECONDS = int(os.getenv("DOCUMENT_PROCESSING_INTERVAL_SECONDS", "30"))
DOCUMENT_PROCESSING_ENABLED = os.getenv("DOCUMENT_PROCESSING_ENABLED", "false" if IS_TEST else "true").lower() == "true"

# ==================================================
# PEPPOL (Recommand access point)
# ==================================================
PEPPOL_TEST_MODE = os.getenv("PEPPOL_TEST_MODE", "false").lower() == "true"
PEPPOL_POLL_INTERVAL_SECONDS = int(os.getenv("PEPPOL_POLL_INTERVAL_SECONDS", "300"))
PEPPOL_POLLING_ENABLED = os.getenv("PEPPOL_POLLING_ENABLED", "false" if IS_TEST else "true").lower() == "true"

# ==================================================
# EMAIL (SMTP)
# ==================================================
SMTP_HOST = os.getenv("SMTP_HOST")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
SMTP_FROM = os.getenv("SMTP_FROM", "Dokus <no-reply@dokus.tech>")
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

# ==================================================
# FILE UPLOADS
# ==================================================
BASE_DIR = Path(__file__).resolve().parent
UPLOAD_FOLDER = Path(os.getenv("UPLOAD_FOLDER", str(BASE_DIR / "uploads")))
ALLOWED_EXTENSIONS = {"pdf", "png", "jpg", "jpeg", "txt", "xml"}
MAX_UPLOAD_SIZE = 20 * 1024 * 1024  # 20MB

# ==================================================
# CORS
# ==================================================
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
