from __future__ import annotations

from typing import Optional


# -----------------------------
# Exceptions
# -----------------------------
class CustomResourceError(Exception):
    """
    Base for every failure surfaced by the adapter.

    `status` carries the HTTP status of the API server response when the
    failure came from one (None for parse/transport failures).
    """

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class ParseError(CustomResourceError):
    pass


class MissingFieldError(ParseError):
    pass


class ClientConfigError(CustomResourceError):
    pass


class DiscoveryError(CustomResourceError):
    pass


class CreateError(CustomResourceError):
    pass


class ReadError(CustomResourceError):
    pass


class NotFoundError(ReadError):
    pass


class UpdateError(CustomResourceError):
    pass


class UpdateConflictError(UpdateError):
    pass


class DeleteError(CustomResourceError):

    @property
    def not_found(self) -> bool:
        return self.status == 404
