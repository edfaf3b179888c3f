"""Custom exceptions for cost-to-visit reconciliation."""


class AOMError(Exception):
    """Base exception for all reconciliation errors."""


class ConfigurationError(AOMError):
    """Raised when required configuration or a companion capability is missing.

    Fatal for the affected unit: a single site when a timezone is missing,
    the whole date range when a required data source is unavailable.
    """


class CostImportError(AOMError):
    """Raised by a cost importer when a platform import cannot complete.

    The importer never commits a partial import, so the cost store keeps the
    last complete import for the range.
    """

    def __init__(self, platform: str, message: str):
        self.platform = platform
        super().__init__(f"{platform} import failed: {message}")


class ImportNetworkError(CostImportError):
    """Raised for network failures, timeouts and 5xx after retries."""


class ImportAuthError(CostImportError):
    """Raised when the platform rejects credentials (HTTP 401/403)."""

    def __init__(self, platform: str, status: int, body: str):
        self.status = status
        self.body = body
        super().__init__(platform, f"HTTP {status} (auth), body={body[:200]}")


class ImportParseError(CostImportError):
    """Raised when a platform response cannot be parsed into cost records."""
