"""Core application utilities."""

from .addresses import addresses_match, find_member, normalize_address, to_network_address
from .config import Settings, get_settings
from .database import (
    async_session_factory,
    build_engine,
    build_session_factory,
    close_db,
    engine,
    get_session,
    get_session_context,
    init_db,
)
from .dependencies import SessionDep
from .pass_guard import PassGuard

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "engine",
    "async_session_factory",
    "build_engine",
    "build_session_factory",
    "get_session",
    "get_session_context",
    "init_db",
    "close_db",
    "SessionDep",
    # Addresses
    "normalize_address",
    "addresses_match",
    "find_member",
    "to_network_address",
    # Passes
    "PassGuard",
]
