"""Custom exceptions for the CRM Ingestor."""


class CrmIngestorError(Exception):
    """Base exception for all CRM Ingestor errors."""


class AuthenticationError(CrmIngestorError):
    """Failed to authenticate with the Google APIs."""


class ParseError(CrmIngestorError):
    """Failed to decode a Gmail message payload."""


class WriteError(CrmIngestorError):
    """Failed to write a parsed record to the tabular store."""


class ConfigurationError(CrmIngestorError):
    """A required sheet, header or setting is missing. Aborts the current category."""
