"""Order domain exceptions.

Raised inside the service layer when a business rule is violated.
Boundary methods (``OrderTransitionService.transition`` and the progress
controller) turn them into structured results; views translate those
results into HTTP responses.
"""

from __future__ import annotations


class OrderNotFound(Exception):
    """The requested order does not exist."""


class PaymentNotFound(Exception):
    """The requested payment does not exist."""


class InvalidTransition(Exception):
    """A status change outside the legal edges was attempted. Nothing was mutated."""


class IneligibleState(Exception):
    """An operator action was attempted from the wrong precondition."""


class TransientStoreError(Exception):
    """The store is temporarily unavailable; the unit of work can be retried."""
