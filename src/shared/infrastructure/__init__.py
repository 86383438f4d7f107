"""
Infrastructure Layer
=====================

Low-level technical concerns shared by every module:
- Structured logging
- Correlation ID tracking
"""
