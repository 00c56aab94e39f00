"""Domain errors raised by services; main.py renders them as {"error": ...} JSON."""
from typing import Optional


class ServiceError(Exception):
    status_code = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidRequestError(ServiceError):
    status_code = 400


class NotFoundError(ServiceError):
    status_code = 404


class ConflictError(ServiceError):
    status_code = 409


class ConfigurationError(ServiceError):
    status_code = 500
