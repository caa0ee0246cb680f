"""Entry point for `python -m craftip_release`."""

from craftip_release.cli import app

app(prog_name="craftip-release")
