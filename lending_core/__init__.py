"""
Lending Core

Loan accounting engine for a microfinance lender: flat-rate loan terms,
business-day maturity and lateness rules, an atomic payment ledger with
credit-score penalties, integrity-preserving payment reversal and
portfolio reporting. All money is handled as Decimal.
"""

__version__ = "1.0.0"
