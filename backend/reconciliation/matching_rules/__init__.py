"""
Matching Rules Module
"""

from .invoice_rules import InvoiceMatchingRules, ScoreBreakdown, invoice_rules

__all__ = ["InvoiceMatchingRules", "ScoreBreakdown", "invoice_rules"]
