"""
Infrastructure Layer
=====================

Low-level technical concerns:
- Database connection management
"""
