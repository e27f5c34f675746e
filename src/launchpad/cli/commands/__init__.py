# launchpad/cli/commands: Command modules for the launchpad CLI.
#
# Each module in this package provides one or more CLI commands.

from .info import auth, recipes
from .jobs import remote, scaffold, uplink
from .serve import serve

__all__ = [
    # info.py
    "auth",
    "recipes",
    # jobs.py
    "scaffold",
    "uplink",
    "remote",
    # serve.py
    "serve",
]
