"""Base contract enforcement utilities.

The require() function is the single enforcement mechanism for all contracts.
"""

from holoarchive.contracts.failure import ContractViolation


def require(condition: bool, message: str) -> None:
    """Enforce a pipeline contract.

    Called at stage boundaries to verify the preceding stage produced the
    guaranteed invariants. It is fail-fast: no recovery, no fallback.

    Parameters
    ----------
    condition : bool
        The invariant that must be true. If False, ContractViolation is raised.

    message : str
        Error message explaining the contract violation (for debugging).

    Raises
    ------
    ContractViolation
        If condition is False. This indicates a bug in pipeline logic.

    Examples
    --------
    >>> require(len(edges) >= 2, "Binning contract: need at least one bin")
    >>> require(state is State.FINALIZED, "Archive contract: result not finalized")
    """
    if not condition:
        raise ContractViolation(message)
