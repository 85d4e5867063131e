"""
Worker module.
Contains the dispatcher, retry policy, handler registry and worker process.
"""

from billing_mq.worker.dispatcher import Dispatcher, MessageHandler, Subscription
from billing_mq.worker.retry import RetryDecision, RetryPolicy

__all__ = [
    "Dispatcher",
    "MessageHandler",
    "Subscription",
    "RetryDecision",
    "RetryPolicy",
]
