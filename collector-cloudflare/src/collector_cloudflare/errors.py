"""Exception hierarchy for the Cloudflare collector.

Startup errors (``FatalConfigError``) and zone listing errors
(``ProviderError``) stop the process. ``QueryError`` and
``MalformedResponseError`` only cost the request path they happened on.
"""


class ExporterError(Exception):
    """Base class for all collector errors."""


class FatalConfigError(ExporterError):
    """Configuration is unusable; the collector must not start scraping."""


class UnknownMetricError(FatalConfigError):
    def __init__(self, name: str):
        super().__init__(f"metric {name} doesn't exist")
        self.name = name


class ProviderError(ExporterError):
    """Zone listing against the Cloudflare REST API failed."""


class ProviderAuthError(ProviderError):
    pass


class ProviderUnavailable(ProviderError):
    pass


class QueryError(ExporterError):
    """A single analytics query failed at the transport or GraphQL level."""

    def __init__(self, message: str, request_path: str = ""):
        super().__init__(message)
        self.request_path = request_path


class MalformedResponseError(ExporterError):
    """The analytics response lacks the ``viewer.zones`` envelope."""
