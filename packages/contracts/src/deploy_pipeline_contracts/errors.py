from __future__ import annotations


class ContractsError(RuntimeError):
    """Base error for contracts package failures"""


class ContractsResourceError(ContractsError):
    """
    Raised when a required contract resource file cannot be located or read.

    A RuntimeError rather than FileNotFoundError: a missing resource means the
    contracts package is broken or mispackaged, not that a user path is wrong.
    """


class RecordValidationError(ContractsError):
    """Run record or transition did not validate against the shipped JSON schema"""
