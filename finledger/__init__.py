"""
finledger - Ledger Aggregation and Projection Engine

The computational core of a personal finance tracker: it turns raw
expense, income, installment and recurring-obligation records into
installment schedules, recurrence expansions and a month balance with
a month-end projection.

DESIGN PRINCIPLES:
1. The engine is pure: records in, numbers out, no I/O
2. "Today" is always passed in, never read from the wall clock
3. Multi-record writes either complete or are compensated
4. Every write is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "finledger Team"
