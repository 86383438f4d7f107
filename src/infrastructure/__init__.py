"""
Infrastructure
==============

Cross-module technical infrastructure (database engine and sessions).
"""
