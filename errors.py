"""
Simulated Souls — Error taxonomy

Every failure the UI can show is one of these. Provider errors are
classified close to where they are raised (see resilience.classify_error)
and translated into one of the classes below before leaving the engine.
"""
from enum import Enum


class ErrorKind(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    QUOTA_EXCEEDED = "quota_exceeded"
    TRANSIENT_UNAVAILABLE = "transient_unavailable"
    FATAL = "fatal"


class AdventureError(Exception):
    """Base class for classified, user-presentable failures."""

    kind = ErrorKind.FATAL
    http_status = 500
    default_message = "Something went wrong while telling the story."

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.user_message = message or self.default_message


class InvalidCredentialsError(AdventureError):
    kind = ErrorKind.INVALID_CREDENTIALS
    http_status = 401
    default_message = (
        "Invalid API Key. Please ensure your API key is correctly configured "
        "in the environment variables and that the key is valid."
    )


class QuotaExceededError(AdventureError):
    kind = ErrorKind.QUOTA_EXCEEDED
    http_status = 429
    default_message = (
        "You've exceeded your current API usage quota. Please check your plan "
        "and billing details, or try again later."
    )


class ServiceOverloadedError(AdventureError):
    """Transient unavailability that outlasted every retry."""

    kind = ErrorKind.TRANSIENT_UNAVAILABLE
    http_status = 503
    default_message = (
        "The AI service is currently experiencing high traffic. We automatically "
        "retry failed requests, but if this persists, please try again in a few minutes."
    )


class ServicesExhaustedError(AdventureError):
    """Primary and fallback models are both refused by the circuit breaker."""

    http_status = 503
    default_message = (
        "The AI storytellers are all unavailable right now. "
        "Please wait a moment before trying again."
    )


class RelayConfigError(AdventureError):
    default_message = "Image generation is not configured: the Cloudflare API key is missing."


class ImageProviderError(AdventureError):
    http_status = 502

    def __init__(self, status, detail=""):
        self.status = status
        self.detail = detail or ""
        message = f"Cloudflare API error: {status}."
        if self.detail:
            message = f"{message} {self.detail}"
        super().__init__(message)


def user_message_for(exc):
    """Turn any exception into the single message shown to the player."""
    if isinstance(exc, AdventureError):
        return exc.user_message
    return f"An error occurred: {exc}"


def http_status_for(exc):
    return exc.http_status if isinstance(exc, AdventureError) else 500
