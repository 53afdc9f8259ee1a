from __future__ import annotations

from typing import Optional


class DrawError(Exception):
    """Base error for anything an operator should see as a terminal message."""

    def __init__(self, message: str, *, operation: Optional[str] = None, channel: Optional[str] = None):
        super().__init__(message)
        self.operation = operation
        self.channel = channel

    def describe(self) -> str:
        parts = [str(self)]
        context = []
        if self.operation:
            context.append(f"operation={self.operation}")
        if self.channel:
            context.append(f"channel={self.channel}")
        if context:
            parts.append(f"({', '.join(context)})")
        return " ".join(parts)


class ProxyError(DrawError):
    """MProxy is unreachable, misconfigured or answered with an error."""

    def __init__(self, message: str, *, status: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.status = status


class EmptyPoolError(DrawError):
    pass


class NotFoundError(DrawError):
    pass


class AlreadyFinishedError(DrawError):
    pass


class PublishError(DrawError):
    pass


class StaleTokenError(DrawError):
    pass
