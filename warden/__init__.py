"""OpenWarden: a behavior engine for fleets of autonomous guard agents."""

try:
    from importlib.metadata import version as _pkg_version

    __version__ = _pkg_version("openwarden")
except Exception:
    __version__ = "2026.10.18.1"  # fallback

__all__ = ["__version__"]
