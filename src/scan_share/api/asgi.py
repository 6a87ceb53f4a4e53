"""ASGI entrypoint for the scan-share API."""

from scan_share.api.app import create_app
from scan_share.containers import build_container

app = create_app(build_container())
