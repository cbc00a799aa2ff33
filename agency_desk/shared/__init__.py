"""
Shared Kernel Module
====================

Shared infrastructure used by the ticket engine and its adapters
(HTTP middleware, structured logging).

DO NOT add ticket lifecycle or SLA business logic to the shared kernel.
"""
