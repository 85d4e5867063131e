"""
Billing Message Queue

Asynchronous message queue used by the billing services for customer,
subscription and invoice lifecycle events: reliable enqueue/dequeue, delayed
delivery, retry with exponential backoff, dead-lettering, and a best-effort
broadcast channel.
"""

__version__ = "1.0.0"
