"""Launchpad - drive dev-environment provisioning and AI agent sessions to a pull request."""

__version__ = "0.1.0"

__all__ = ["__version__"]
