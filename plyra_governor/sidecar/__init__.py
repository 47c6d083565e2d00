"""HTTP sidecar exposing the governor to hook scripts and management UIs."""

from plyra_governor.sidecar.server import create_app

__all__ = ["create_app"]
