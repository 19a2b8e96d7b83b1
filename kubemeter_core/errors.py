class KubemeterError(Exception):
    """Base error for kubemeter."""


class RecoverableError(KubemeterError):
    """Indicates the operation can be retried safely."""


class ValidationError(KubemeterError):
    """Input validation failure."""


class DiscoveryError(RecoverableError):
    """Listing tenants or tenant entities failed."""


class ClassificationError(KubemeterError):
    """A single contribution could not be attributed (e.g. unknown GPU model)."""


class ConversionError(KubemeterError):
    """A resource kind has no property definition."""


class PersistenceError(RecoverableError):
    """The usage store rejected or failed a read or write."""
