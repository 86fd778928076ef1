"""
Expense Ledger - Source Package

The record-keeping core of a personal expense tracker: merchant
categorization, expense list queries and monthly dashboard analytics.

DESIGN PRINCIPLES:
1. A mapping the user taught us beats any AI guess
2. The AI never blocks the user for longer than its deadline
3. Store failures are never reported as "no data"
4. Month boundaries follow the user's clock, not the server's
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Expense Ledger Team"
