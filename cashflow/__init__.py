"""Invoices, bills, expenses and the cashflow overview."""
