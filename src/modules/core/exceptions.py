"""Cross-module error taxonomy.

``NonFatalError`` marks failures of side effects (notification delivery,
audit writes) that must never abort the business operation that produced
them.  Components that hit one log it with ``non_fatal=True`` and return
it as a value instead of raising it.
"""

from __future__ import annotations


class NonFatalError(Exception):
    """A side-effect failure that is reported but never propagated."""

    @property
    def kind(self) -> str:
        return type(self).__name__
