"""
ETL Kernel - shared infrastructure for the batch engine.

- Declarative ORM base and engine / session scopes
- Injectable clock
- Typed exceptions with machine-readable codes
- Structured JSON logging
- Monotonic sequences and canonical hashing
"""

__version__ = "0.1.0"
