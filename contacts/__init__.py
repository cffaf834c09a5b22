"""Contacts: customers and vendors with addresses and notes."""
