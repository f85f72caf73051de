"""Exception hierarchy for the Conso exporter."""


class ConsoExporterError(Exception):
    """Base exception for all exporter errors."""
    pass


class ConfigError(ConsoExporterError):
    """Exception raised for invalid configuration or credential entries."""
    pass


class ProviderError(ConsoExporterError):
    """Base exception for metering provider errors."""
    pass


class ProviderAuthError(ProviderError):
    """Exception raised when credentials are invalid or cannot be refreshed."""
    pass


class ProviderFetchError(ProviderError):
    """Exception raised when a data request fails."""
    pass


class PersistenceError(ConsoExporterError):
    """Exception raised when the credential store or InfluxDB write fails."""
    pass
