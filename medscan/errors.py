# medscan/errors.py
from __future__ import annotations

from typing import List


class MedscanError(Exception):
    """
    Base class for every failure the session controller knows how to handle.

    `user_message` is what the operator sees; the exception text itself
    only goes to the logs.
    """

    user_message = "Something went wrong. Please try again."


class IntakeValidationError(MedscanError):
    user_message = "Please complete all intake fields."

    def __init__(self, errors: List[str]):
        super().__init__("; ".join(errors))
        self.errors = errors


class ConfigurationError(MedscanError):
    user_message = "Service configuration is missing. Please contact support."


class CameraError(MedscanError):
    user_message = "Unable to access camera. Please check permissions."


class CameraNotReadyError(MedscanError):
    user_message = "The camera is still starting. Please wait a moment."


class InvalidTransitionError(MedscanError):
    user_message = "That action is not available right now."


class IntegrationError(MedscanError):
    service = "integration"

    def __init__(self, message: str, *, transient: bool = False):
        super().__init__(message)
        self.transient = transient


class RecordStoreError(IntegrationError):
    service = "record_store"
    user_message = "Failed to save patient data. Please try again."


class MediaStoreError(IntegrationError):
    service = "media_store"
    user_message = "Failed to upload images. Please try again."


class AnalysisError(IntegrationError):
    service = "analysis"
    user_message = "Failed to analyze images. Please try again."


class DeliveryError(IntegrationError):
    service = "delivery"
    user_message = "Could not send the report. Please try again."
