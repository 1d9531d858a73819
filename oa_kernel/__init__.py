"""
OA Kernel - approval engine for the office-automation server.

Multi-stage approvals over a relational store with:
- Ordered, versioned approval flows
- Participant resolution by person, role or department head
- Any-one-approves node advancement
- Transactional business side effects
- Outbox-backed todo and notification intents
- Hash-chained audit trail
"""

__version__ = "0.1.0"
