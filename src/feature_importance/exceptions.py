"""Exceptions raised by feature-importance."""


class InvalidInputError(ValueError):
    """Malformed data or options, detected before any prediction is made.

    Examples are ragged or empty feature matrices, targets of the wrong length,
    an unknown scoring kind or a non-positive number of repetitions.
    """


class ModelError(RuntimeError):
    """The predict capability failed or returned predictions of the wrong shape.

    The exception raised by the model itself, if any, is available as
    `__cause__`.
    """
