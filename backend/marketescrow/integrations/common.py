from __future__ import annotations


class IntegrationDisabledError(RuntimeError):
    pass


class IntegrationMisconfiguredError(RuntimeError):
    pass


def integrations_mode(settings) -> str:
    return (getattr(settings, "integrations_mode", "disabled") or "disabled").strip().lower()
