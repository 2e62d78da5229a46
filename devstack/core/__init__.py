"""Core infrastructure: settings, domain exceptions and events."""
