"""Configuration error definitions."""

from __future__ import annotations

from syncledger.domain.errors import ValidationError


class ConfigurationError(ValidationError):
    """An environment setting is present but unusable."""

    def __init__(self, message: str, *, reason: str = "invalid_configuration") -> None:
        super().__init__(message, reason=reason)


class MissingConfigurationError(ConfigurationError):
    """Required settings are absent or blank; ``names`` lists them."""

    def __init__(self, names: tuple[str, ...]) -> None:
        super().__init__(
            f"Missing configuration for: {', '.join(names)}", reason="missing_configuration"
        )
        self.names = names
