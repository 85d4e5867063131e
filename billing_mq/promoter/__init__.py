"""
Promoter module.
Contains the delay promoter that moves due delayed envelopes to ready queues.
"""

from billing_mq.promoter.main import Promoter, run

__all__ = ["Promoter", "run"]
