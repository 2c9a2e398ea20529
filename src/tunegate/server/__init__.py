"""HTTP surface of the gateway."""

from tunegate.server.app import build_store, create_app, create_app_from_config

__all__ = ["build_store", "create_app", "create_app_from_config"]
