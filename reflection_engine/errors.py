"""Exceptions raised by the reflection engine's adapters."""


class ReflectionError(Exception):
    """Base class for reflection engine errors."""


class UpstreamUnavailable(ReflectionError):
    """The event store or the generative model could not be reached."""
