"""
Storefront order management.

An order aggregate with checkout state machine, totals updater, stock
coordination, free shipping promotion and order emails, served over a
FastAPI application.
"""

__version__ = "1.0.0"
