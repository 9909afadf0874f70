"""Exception hierarchy for the orchestration engine."""

from __future__ import annotations


class ZapGPTError(Exception):
    """Base class for all zapgpt errors."""


class ConfigurationError(ZapGPTError):
    """Missing credentials or an unsupported model. Never retried."""


class ProviderError(ZapGPTError):
    """An AI provider call failed. Retried by the turn handler."""


class RunTimeoutError(ProviderError):
    """An assistant run did not finish within the polling budget."""


class TransportError(ZapGPTError):
    """The WhatsApp transport rejected a request."""
