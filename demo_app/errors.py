from __future__ import annotations


class DemoAppError(Exception):
    """Base class for errors raised by the service."""


class DuplicateNameError(DemoAppError):
    """A metric (or one of its exposition series) is already registered."""

    def __init__(self, name: str) -> None:
        super().__init__(f"metric already registered: {name}")
        self.name = name


class SamplingUnavailable(DemoAppError):
    """A metric cannot be sampled on this platform; the metric is omitted."""


class RenderError(DemoAppError):
    """The registry failed to produce an exposition snapshot."""


class BindError(DemoAppError):
    """The listening socket could not be bound."""

    def __init__(self, host: str, port: int, reason: str) -> None:
        super().__init__(f"cannot bind {host}:{port}: {reason}")
        self.host = host
        self.port = port


class DuplicateRouteError(DemoAppError):
    """Two handlers were declared for the same (method, path)."""
