"""
Personal investment plan tracker.

Compares a generated month-by-month compounding projection ("targets") against
user-reported monthly figures ("actuals") and keeps both in sync with a
per-identity document store.
"""

__version__ = "1.0.0"
