"""Routers package."""

from . import (
    health,
    business,
    credits,
    campaigns,
)
