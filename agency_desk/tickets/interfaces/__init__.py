"""
Ticket Interfaces Layer
=======================

Interface adapters (controllers) for the ticket lifecycle module.

Contains:
- Controllers: FastAPI route handlers for tickets and batch job triggers

This is the outermost layer - handles HTTP requests/responses and
delegates to application services.
"""

from agency_desk.tickets.interfaces.controllers import tickets_router, jobs_router

__all__ = ["tickets_router", "jobs_router"]
