"""
Setup script for the Dokus API.

Installs the project in editable mode for development:
    pip install -e ".[test]"

This puts the project root on the PYTHONPATH so imports such as
    from cashflow.service import InvoiceService
work from scripts and tests.
"""

from setuptools import setup, find_packages

setup(
    name="dokus",
    version="1.0.0",
    description="Dokus - invoicing, documents and Peppol e-invoicing for Belgian freelancers",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["config", "main"],
    python_requires=">=3.10",
    install_requires=[
        "fastapi>=0.110,<0.137",
        "uvicorn[standard]>=0.27",
        "sqlalchemy>=2.0",
        "pydantic[email]>=2.5",
        "python-jose[cryptography]>=3.3",
        "bcrypt>=4.0",
        "python-dotenv>=1.0",
        "python-multipart>=0.0.9",
        "httpx>=0.26",
        "structlog>=24.1",
        "slowapi>=0.1.9",
        "pytz>=2024.1",
        "aiosmtplib>=3.0",
    ],
    extras_require={
        "postgres": ["psycopg2-binary>=2.9"],
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
)
