"""Routers package."""

from . import (
    health,
    generate,
    credits,
    billing,
)
