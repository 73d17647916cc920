"""
ReconFlow - Invoice and Payment Reconciliation Service

A service providing:
- Document processing workflows (upload, classify, extract, validate, save)
- Invoice/payment match suggestions and automatic reconciliation
- Exception tracking for discrepancies and unmatched records
- Processing job tracking with live progress events
"""

__version__ = "1.0.0"
