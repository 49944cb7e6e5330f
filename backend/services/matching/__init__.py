"""
Driver matching and offer dispatch service.

This module handles:
    - Ranking eligible drivers for a delivery
    - Offering the delivery to the best candidate
    - Expiring unanswered offers and re-dispatching
"""

from .candidates import rank_candidates
from .offer_dispatch import dispatch_delivery, redispatch

__all__ = [
    "rank_candidates",
    "dispatch_delivery",
    "redispatch",
]
