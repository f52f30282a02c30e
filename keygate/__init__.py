"""keygate: API key issuance and validation gateway."""

__version__ = "1.0.0"
