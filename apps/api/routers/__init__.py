"""Routers package."""

from . import (
    health,
    auth,
    generate,
    creations,
    credits,
    billing,
    webhooks,
    admin,
)
