"""Centralized failure type for contract violations.

Contracts fail fast, loud, and once. All violations raise the same
exception type, allowing caller to handle pipeline bugs uniformly.
"""


class ContractViolation(RuntimeError):
    """Raised when a pipeline contract is violated.

    This indicates a bug in pipeline logic, not bad input data or a
    recoverable instrument edge case. It means a stage did not produce the
    invariants it promised, or a stage was driven out of order.

    Key distinction:
    - ValueError: User/config error (handled by Pydantic) or malformed file
    - OSError: File could not be read or written
    - ContractViolation: Pipeline bug (programmer error)
    """
    pass
