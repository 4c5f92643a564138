"""API dependencies - re-exports from submodules."""

from .database import DbSession
from .stripe import StripeDep, get_stripe_service

__all__ = [
    "DbSession",
    "StripeDep",
    "get_stripe_service",
]
