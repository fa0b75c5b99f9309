# billing_api/__init__.py
"""
Billing API: bills with itemized totals, partial payments and a payment
ledger, served over FastAPI.

    uvicorn billing_api:app --reload
"""

from .main import app

__all__ = ["app"]
