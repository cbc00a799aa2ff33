"""
Ticket Lifecycle Module
=======================

Bounded Context for the ticket lifecycle and its SLA engine.

Responsibilities:
- Normalize every status change to a canonical status
- Resolve SLA targets per department and priority, and track due times and breaches
- Assign new tickets to the least loaded eligible agent
- Escalate tickets that went unanswered past a rule's threshold
- Close tickets that stayed resolved for a grace period
- Hand assignment, escalation, closure and SLA warning events to a notification sink
"""
