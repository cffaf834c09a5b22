"""Peppol e-invoicing through the Recommand access point."""
