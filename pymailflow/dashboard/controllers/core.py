"""Core dashboard routes."""
from typing import Any, Dict

from litestar import Controller, delete, get

from pymailflow.client import Client


class CoreController(Controller):
    path = "/"

    @get()
    async def home(self, client: Client) -> Dict[str, Any]:
        return client.stats()

    @delete("/queues/{queue:str}", status_code=200)
    async def clear_queue(self, client: Client, queue: str) -> Dict[str, Any]:
        return {"queue": queue, "removed": client.clear(queue)}

    @delete("/jobs", status_code=200)
    async def purge(self, client: Client) -> Dict[str, Any]:
        return {"removed": client.purge()}
