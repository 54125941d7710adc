"""Typed failures raised by external clients and the worker pool."""

from __future__ import annotations


class ReviewError(Exception):
    """Base class for recoverable upstream failures."""


class LLMError(ReviewError):
    """The model call failed, timed out, or returned nothing."""


class SourceError(ReviewError):
    """Phabricator Conduit or git could not produce the requested data."""


class WorkerError(ReviewError):
    """A delegated worker task failed, timed out, or was unavailable."""
