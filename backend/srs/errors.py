"""Exceptions raised by the scheduling engine and review service."""


class SRSError(Exception):
    """Base class for scheduling errors."""


class InvalidRatingError(SRSError, ValueError):
    """A rating outside again/hard/good/easy reached the boundary."""


class InvalidStepError(SRSError, ValueError):
    """A learning or relearning step string could not be parsed."""


class CardNotFoundError(SRSError, LookupError):
    pass


class CardRemovedError(SRSError):
    """The card has the terminal ``removed`` status."""


class StruggleEventNotFoundError(SRSError, LookupError):
    pass


class StruggleEventAlreadyResolved(SRSError):
    pass


class CardConflictError(SRSError):
    """The card kept changing underneath every attempt to rate it."""
