"""
Domain value types shared by every Dokus module.
"""

from domain.money import Money, VatRate

__all__ = ["Money", "VatRate"]
