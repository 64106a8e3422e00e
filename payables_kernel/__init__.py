"""
Payables Kernel

Shared foundation for the payment calculation and budget balance engine:
- Typed exceptions with machine-readable codes
- Structured JSON logging
- Injectable clock
- Budget line domain records and the legacy document codec
- SQLAlchemy persistence primitives
"""

__version__ = "0.1.0"
