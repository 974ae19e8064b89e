from nwcast_core.core.logging import setup_logging  # noqa: F401

__all__ = ["setup_logging"]
