"""Error taxonomy shared by the store, market data client and assistant."""


class FinanceError(Exception):
    """Base class for every error raised by this project."""


class ValidationError(FinanceError):
    """Missing or invalid input, detected before any remote call."""


class NotAuthenticatedError(FinanceError):
    """A store operation was attempted without a signed-in user."""


class BackendError(FinanceError):
    """The persistence backend rejected or failed an operation."""


class MarketDataError(FinanceError):
    """Price API request failed after retries were exhausted."""


class RateLimitError(MarketDataError):
    """Price API answered HTTP 429. Never retried by the client."""


class LLMConfigError(FinanceError):
    """The LLM API key is not configured."""


class LLMAPIError(FinanceError):
    """The LLM API answered non-2xx or returned an empty completion."""
