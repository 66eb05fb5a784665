"""authgateway - async HTTP gateway that keeps an OAuth2 bearer session alive."""

__version__ = "0.1.0"
