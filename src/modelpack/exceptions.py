"""Custom exceptions for the modelpack build pipeline."""


class ModelpackError(Exception):
    """Base exception for all fatal build pipeline errors."""

    pass


class ConfigurationError(ModelpackError):
    """Raised when the build setup is invalid before any image is built."""

    pass


class GenerationError(ModelpackError):
    """Raised when build instructions cannot be generated."""

    pass


class BuildEngineError(ModelpackError):
    """Raised when the build engine fails to build or amend an image."""

    pass


class CachePersistenceError(ModelpackError):
    """Raised when the weights manifest cannot be persisted."""

    pass


class SchemaError(ModelpackError):
    """Raised when the model schema cannot be obtained or is invalid."""

    pass


class RegistryError(ModelpackError):
    """Raised when base image metadata cannot be fetched from a registry."""

    pass
