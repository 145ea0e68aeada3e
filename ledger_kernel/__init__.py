"""
Ledger Kernel

Signed-quantity stock ledger for the Canet and Huarte facilities:
- Immutable movement rows with explicit source variants
- Typed, recoverable error hierarchy
- Structured JSON logging
- Injectable clock for grant expiry and audit timestamps
"""

__version__ = "0.1.0"
