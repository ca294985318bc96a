"""Job-related dashboard routes."""
from typing import Any, Dict, List

from litestar import Controller, delete, get, post
from litestar.exceptions import NotFoundException

from pymailflow.client import Client


class JobsController(Controller):
    path = "/jobs"

    @get("/{queue:str}")
    async def list_jobs(self, client: Client, queue: str) -> List[Dict[str, Any]]:
        return [client.job_dict(job) for job in client.list(queue)]


class FailedController(Controller):
    path = "/failed"

    @get()
    async def list_failed(self, client: Client) -> List[Dict[str, Any]]:
        return [client.failed_dict(failed) for failed in client.failed()]

    @post("/retry", status_code=200)
    async def retry_all(self, client: Client) -> Dict[str, Any]:
        return {"retried": client.retry("all")}

    @post("/{job_id:str}/retry", status_code=200)
    async def retry_one(self, client: Client, job_id: str) -> Dict[str, Any]:
        if not client.retry(job_id):
            raise NotFoundException(detail=f"No failed job with id {job_id}")
        return {"retried": 1, "id": job_id}

    @delete(status_code=200)
    async def flush(self, client: Client) -> Dict[str, Any]:
        return {"removed": client.flush()}
