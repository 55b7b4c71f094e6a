# common/errors.py
from __future__ import annotations


class TrafficCamError(Exception):
    """Base class for every failure that ends (or degrades) a run."""


class PreconditionError(TrafficCamError):
    """Missing or unusable run input: location, credentials, camera id."""


class NetworkError(TrafficCamError):
    """An HTTP call failed or returned a payload we cannot use."""


class RequestTimeoutError(NetworkError):
    pass


class DecodeError(TrafficCamError):
    """A downloaded frame could not be decoded as an image."""


class EncodeError(TrafficCamError):
    pass


class CompressionError(TrafficCamError):
    """The compressor failed. Callers treat this as non-fatal."""


class PublishError(TrafficCamError):
    """Malformed publish response, or a publish phase called out of order."""
