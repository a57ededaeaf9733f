"""Exception hierarchy shared by the job engine."""

from __future__ import annotations

from typing import Any, Mapping

__all__ = [
    "BackendError",
    "BackendRejected",
    "BackendTimeout",
    "BackendUnavailable",
    "ConfigError",
    "GitOperationFailed",
    "HugexError",
    "ImageNotFound",
    "InvalidJobTransition",
    "JobNotFound",
    "MissingCredential",
    "PatchApplicationFailed",
]


class HugexError(RuntimeError):
    """Base error carrying optional structured details for telemetry."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


class ConfigError(HugexError):
    """Raised when configuration values cannot be interpreted."""


class MissingCredential(HugexError):
    """Raised before any network call when a required credential is absent."""


class BackendError(HugexError):
    """Base error for execution backend failures."""


class BackendUnavailable(BackendError):
    """Raised when the compute substrate cannot be reached."""


class ImageNotFound(BackendUnavailable):
    """Raised when the configured container image is not present locally."""

    def __init__(self, image: str, available: tuple[str, ...] = ()) -> None:
        listing = ", ".join(available) if available else "none"
        super().__init__(
            f"Docker image '{image}' not found. Pull or build the image first "
            f"(available images: {listing}).",
            details={"image": image, "available": list(available)},
        )
        self.image = image
        self.available = available


class BackendTimeout(BackendError):
    """Raised when a job does not reach a terminal state within its bound."""


class BackendRejected(BackendError):
    """Raised when the substrate reports a failure for the job."""


class PatchApplicationFailed(HugexError):
    """Raised when a file change cannot be applied to a working directory."""


class GitOperationFailed(HugexError):
    """Raised when a git command fails or times out."""


class JobNotFound(HugexError):
    """Raised when the registry has no job with the requested identifier."""


class InvalidJobTransition(HugexError):
    """Raised when a status update would break the job lifecycle ordering."""
