from __future__ import annotations


class MonitorError(Exception):
    """Base class for balance monitor failures."""


class ConfigError(MonitorError):
    """Configuration is malformed, or a monitor item cannot be evaluated as configured."""


class ParseError(ConfigError):
    """A threshold or balance string is not a valid decimal."""


class QueryError(MonitorError):
    """A chain query failed or returned something unusable."""


class DeliveryError(MonitorError):
    """The alert transport rejected or failed to deliver a message."""
