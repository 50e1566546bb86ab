"""
Payroll Kernel

Shared infrastructure for the formula-based compensation engine:
- Typed exception hierarchy with machine-readable codes
- Structured JSON logging with request-scoped context
- Injectable clock
- Versioned, append-only formula plan storage
"""

__version__ = "0.1.0"
