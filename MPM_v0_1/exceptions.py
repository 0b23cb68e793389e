"""Exceptions raised while validating and running post-matching."""


class PostMatchingError(Exception):
    """Base class for post-matching exceptions."""

    pass


class SchemaError(PostMatchingError, TypeError):
    """Raised when an argument has a malformed shape or type."""

    pass


class DomainError(PostMatchingError, ValueError):
    """Raised when a value lies outside its allowed domain."""

    pass


class ConsistencyError(PostMatchingError, ValueError):
    """Raised when parallel arguments (or a parameter record and its data) disagree."""

    pass


class DataCoverageError(PostMatchingError):
    """Raised when there is no common donor/recipient pool or an uncovered match value."""

    pass


class StateError(PostMatchingError):
    """Raised when a configuration is structurally unmatchable."""

    pass
