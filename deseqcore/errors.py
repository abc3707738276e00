"""
Exceptions raised by deseqcore.
"""

import numpy as np


class InvalidInputError(ValueError):
    """Inputs violate the estimators' contract (shape, sign, rank)."""


class SingularSystemError(np.linalg.LinAlgError):
    """A weighted Gram matrix could not be factorized or is too ill-conditioned.

    Parameters
    ----------
    message : str
        Description of the failure.
    entity : int, optional
        Row of the count matrix being fit when the failure occurred.
    rcond : float, optional
        Reciprocal condition number of the offending matrix, when known.
    """

    def __init__(self, message, entity=None, rcond=None):
        self.entity = entity
        self.rcond = rcond
        if entity is not None:
            message = f"{message} (row {entity})"
        super().__init__(message)

    def with_entity(self, entity):
        """Copy of this error tagged with the row being fit."""
        msg = self.args[0] if self.args else "singular system"
        return SingularSystemError(msg, entity=entity, rcond=self.rcond)


class FitInterrupted(RuntimeError):
    """Raised when a batch fit is cancelled between rows."""

    def __init__(self, entity):
        self.entity = entity
        super().__init__(f"Fit interrupted before row {entity}")
