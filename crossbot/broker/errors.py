"""Broker error types.

``DataUnavailableError`` is scoped to one symbol's market data;
``ExecutionError`` covers balance, ticker and order calls.
"""


class BrokerError(Exception):
    """Base class for collaborator failures."""


class DataUnavailableError(BrokerError):
    """Market data could not be fetched or parsed."""


class ExecutionError(BrokerError):
    """A balance, ticker or order call failed."""
