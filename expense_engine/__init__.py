"""Expense allocation and debt-netting engine for shared households."""

__version__ = "0.1.0"
