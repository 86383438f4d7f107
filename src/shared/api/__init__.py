"""
Shared API Layer
================

HTTP middleware and exception handlers shared by all routers.
"""
