"""Exception hierarchy for the fleet registry."""

from __future__ import annotations


class FleetRegistryError(Exception):
    """Base exception for all fleet registry errors."""


class ConfigurationError(FleetRegistryError):
    """Invalid or missing configuration."""


class NotFoundError(FleetRegistryError):
    """A requested or referenced entity does not exist.

    Plain lookups return ``None`` instead; this is raised only when an
    operation depends on another entity, e.g. submitting telemetry for a
    device that was never registered (or has been deleted).
    """

    def __init__(self, entity_kind: str, entity_id: str) -> None:
        self.entity_kind = entity_kind
        self.entity_id = entity_id
        self.message = f"{entity_kind[:1].upper()}{entity_kind[1:]} not found"
        super().__init__(f"{self.message}: {entity_id}")


class InvalidInputError(FleetRegistryError):
    """Malformed request payload (wrong types, empty required strings)."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)
