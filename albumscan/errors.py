"""Exceptions raised by the scan pipeline and its service clients."""


class ScanError(Exception):
    """Base class for album scan errors."""


class InvalidInputError(ScanError):
    """The caller sent something the pipeline cannot start on.

    Raised before any external call is made (too few photos, an image Pillow
    cannot decode). This is the only error ``analyze`` lets through.
    """


class ExtractionServiceError(ScanError):
    """The photo extraction service failed for one photo."""


class CatalogUnavailableError(ScanError):
    """A release catalog query failed (network error, timeout, bad status)."""
