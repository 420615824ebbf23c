"""Domain errors raised by the bill-pay services.

Each carries the HTTP status it maps to; ``billpay.main`` installs one handler
that renders them as ``{"error": <message>}``.
"""

from __future__ import annotations

from typing import Any


class BillPayError(Exception):
    status_code: int = 400

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def body(self) -> dict[str, Any]:
        return {"error": self.message}


class InvalidRequest(BillPayError):
    status_code = 400


class NotFound(BillPayError):
    status_code = 404


class Forbidden(BillPayError):
    status_code = 403


class NotOnboarded(NotFound):
    def __init__(self):
        super().__init__("User not onboarded")

    def body(self) -> dict[str, Any]:
        return {"error": {"message": self.message}}


class Unauthorized(BillPayError):
    status_code = 401

    def body(self) -> dict[str, Any]:
        return {"message": self.message}


class InvalidBody(BillPayError):
    """Schema validation failure; ``details`` lists the individual issues."""

    status_code = 422

    def __init__(self, details: list[dict[str, Any]]):
        super().__init__("Invalid request body")
        self.details = details

    def body(self) -> dict[str, Any]:
        return {"error": self.message, "details": self.details}
