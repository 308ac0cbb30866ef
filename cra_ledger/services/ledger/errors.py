"""
Ledger error taxonomy.

Every failure that leaves the ledger layer is one of these two types.
Raw process output never travels inside them; it goes to the debug log.
"""


class LedgerError(Exception):
    """Base class for ledger failures."""

    kind = "ledger"
    retryable = False


class LedgerInfrastructureError(LedgerError):
    """
    The ledger store could not be reached or a git invocation failed
    (missing binary, non-zero exit, permission error, timeout).

    Safe to retry: the idempotency check in the ledger service prevents a
    second commit for a report that was already committed.
    """

    kind = "infrastructure"
    retryable = True


class LedgerIntegrityError(LedgerError):
    """
    The anti-rewrite guard is missing or altered. The audit trail can no
    longer be trusted, so the commit attempt is aborted. Requires an operator.
    """

    kind = "integrity"
    retryable = False
