"""
Sidecar ASGI entry point for standalone uvicorn usage.

Usage:
    uvicorn plyra_governor.sidecar.app:app --host 127.0.0.1 --port 23847
"""

from plyra_governor.core.governor import Governor
from plyra_governor.sidecar.server import create_app

_governor = Governor.default()
app = create_app(_governor)
