"""
Permit Kernel

Multi-level approval workflow for hostel outing and home permissions:
- Routing fixed at submission (emergencies skip the first-line approver)
- Role-and-order checked transitions, linearized per request
- Append-only approval log
- Exactly-once credential issuance on final approval
"""

__version__ = "0.1.0"
