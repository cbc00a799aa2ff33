"""
Agency Desk
===========

Ticket lifecycle and SLA engine for the agency-management platform.
"""

__version__ = "1.0.0"
