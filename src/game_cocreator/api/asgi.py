"""ASGI entrypoint for the game co-creation API."""

from game_cocreator.api.app import create_app
from game_cocreator.containers import build_container

app = create_app(build_container())
