class KinCareError(Exception):
    """Base class for errors raised across the interpretation and billing layers."""


class ValidationError(KinCareError):
    """Malformed input to a public operation. Nothing was mutated."""


class DependencyUnavailable(KinCareError):
    """An external collaborator (model provider, payment provider) could not be reached."""


class PersistenceFailure(KinCareError):
    """The backing store failed. Safe to retry at the delivery layer."""
