"""HOA billing back office: bills, penalties, payments, credit and reversals."""

__version__ = "0.1.0"
