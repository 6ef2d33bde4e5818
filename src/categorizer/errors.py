"""Exceptions raised by classifier clients."""


class ClassifierError(Exception):
    """Base class for every failure of a remote classification call."""


class ClassifierAuthError(ClassifierError):
    """The provider rejected the credentials."""


class ClassifierRateLimitedError(ClassifierError):
    """The provider or the local usage tracker refused the request."""


class MalformedResponseError(ClassifierError):
    """The model answered, but not with a usable assignment document."""


class ClassifierUnavailableError(ClassifierError):
    """Transport failure, timeout or server error after retries."""
