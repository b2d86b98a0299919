"""
Worker error types.

Fatal errors (ConfigurationError, SchemaError) end the process with exit
code 1. Transient errors (PersistenceError, QueueError) abandon one polling
iteration; the message is left on the queue for redelivery.
"""


class WorkerError(Exception):
    """Base class for all worker errors."""


class ConfigurationError(WorkerError):
    """Required configuration is missing or unusable."""


class SchemaError(WorkerError):
    """The orders table could not be created."""


class PersistenceError(WorkerError):
    """An order could not be recorded in the store."""


class QueueError(WorkerError):
    """A receive or delete call against the queue failed."""
