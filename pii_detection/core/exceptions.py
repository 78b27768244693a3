# pii_detection/core/exceptions.py

"""Custom exception hierarchy for the PII Detection System.

This module defines the specific error types used throughout the application
to differentiate between configuration, initialization, and runtime errors.
"""


class DetectionError(Exception):
    """Base exception for all application-specific errors."""

    pass


class ConfigurationError(DetectionError):
    """Raised when configuration loading or validation fails."""

    pass


class InitializationError(DetectionError):
    """Raised when the engine or external resources fail to initialize."""

    pass


class InferenceError(DetectionError):
    """Raised when the NER model fails or times out on a document."""

    pass


class PipelineError(DetectionError):
    """Raised when a specific processing step in the pipeline fails."""

    pass


class ValidationError(DetectionError):
    """Raised when input validation fails (e.g., invalid text input)."""

    pass


class DetectionCancelled(DetectionError):
    """Raised between passes once a cancellation has been requested."""

    pass
