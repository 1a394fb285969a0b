"""Failure types raised by the summary cadence pipeline.

Lock contention and empty generator output are not errors: the first is the
verdict ``dueNow=True, locked=False`` and the second is resolved inside the
orchestrator.
"""

from typing import Optional


class CadenceError(Exception):
    """Base class for cadence pipeline failures."""


class TransientStoreError(CadenceError):
    """A cadence, summary or transcript store read/write failed.

    Not retried in-process; the next cadence signal retries naturally.
    """


class GeneratorFailure(CadenceError):
    """The external summary generator failed (transport, timeout or non-2xx)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
