"""Exceptions raised when a run cannot proceed."""

from __future__ import annotations


class MissingMetadataError(FileNotFoundError):
    """Image dimensions or frame counts could not be read for a run or trial."""


class UnsupportedChannelConfigurationError(ValueError):
    """The imaging channels of a trial cannot be processed with the current options."""
