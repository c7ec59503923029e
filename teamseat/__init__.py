"""Browser automation for team-admin consoles: login, workspace, roster and bulk invites."""

__version__ = "0.1.0"
