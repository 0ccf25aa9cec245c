"""ASGI entrypoint: uvicorn bookholiday.api.app:app"""

from bookholiday.api.factory import create_app

app = create_app()
