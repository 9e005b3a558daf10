"""Routers package."""

from . import (
    health,
    auth,
    users,
    uids,
    api_settings,
    activity,
    api_keys,
    integration,
)
