"""Exceptions raised by the fee calculator and its callers."""


class InvalidInterval(ValueError):
    """Exit precedes entry, or the two timestamps cannot be compared."""
    pass


class ConfigurationError(ValueError):
    """A rule, window or threshold with an inconsistent shape.

    Never escapes a calculation: the offending item is skipped and reported.
    """
    pass


class UnresolvedRate(LookupError):
    """A rate id that the caller's lookup could not find."""
    pass
