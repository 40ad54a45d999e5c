"""
Billing Kernel

Multi-tenant recurring billing core with:
- Organization-scoped recurrence rules and ledger entries
- Month-length and leap-year correct period arithmetic
- Idempotent materialization (watermark + UNIQUE occurrence key)
- Injectable clock for deterministic runs
- Structured JSON logging
"""

__version__ = "0.1.0"
