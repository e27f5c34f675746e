"""HTTP API: job submission, control, auth state and the event stream."""

from launchpad.api.app import create_app

__all__ = ["create_app"]
