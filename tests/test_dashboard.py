from typing import Dict

import pytest
from litestar import Litestar, get, post
from litestar.testing import TestClient

from conftest import RecordingTransport
from pymailflow.client import Client
from pymailflow.common.job import MailPayload
from pymailflow.dashboard import create_dashboard_app
from pymailflow.integrations.litestar import configure_mail, mail_client_dependency, mailer_dependency
from pymailflow.mail.mailer import Mailer


@pytest.fixture
def client(memory_storage):
    return Client(storage=memory_storage)


@pytest.fixture
def http(client):
    with TestClient(app=create_dashboard_app(client)) as test_client:
        yield test_client


def _enqueue(client, queue=None):
    return client.enqueue(MailPayload(to="a@example.com", subject="Hi", content="Hello"), queue=queue)


def _fail(client):
    _enqueue(client)
    job_id = client.storage.reserve("emails").id
    client.storage.fail(job_id, "Unauthorized: Invalid API key or domain")
    return job_id


def test_stats(http, client):
    _enqueue(client)
    _enqueue(client, queue="priority")
    _fail(client)

    response = http.get("/")

    assert response.status_code == 200
    assert response.json() == {"queues": {"emails": 1, "priority": 1}, "pending": 2, "failed": 1}


def test_list_jobs(http, client):
    job_id = _enqueue(client, queue="priority")

    response = http.get("/jobs/priority")

    assert response.status_code == 200
    (job,) = response.json()
    assert job["id"] == job_id
    assert job["payload"]["subject"] == "Hi"
    assert job["reserved_at"] is None


def test_list_failed(http, client):
    job_id = _fail(client)

    (record,) = http.get("/failed").json()

    assert record["id"] == job_id
    assert record["exception_message"] == "Unauthorized: Invalid API key or domain"


def test_retry_one(http, client):
    job_id = _fail(client)

    response = http.post(f"/failed/{job_id}/retry")

    assert response.status_code == 200
    assert response.json() == {"retried": 1, "id": job_id}
    assert client.get_job(job_id).attempts == 0


def test_retry_unknown_job_is_404(http):
    assert http.post("/failed/job_missing/retry").status_code == 404


def test_retry_all_and_flush(http, client):
    _fail(client)
    _fail(client)

    assert http.post("/failed/retry").json() == {"retried": 2}
    assert client.failed() == []

    _fail(client)
    assert http.delete("/failed").json() == {"removed": 1}


def test_clear_queue_and_purge(http, client):
    _enqueue(client, queue="priority")
    _enqueue(client)
    _fail(client)

    assert http.delete("/queues/priority").json() == {"queue": "priority", "removed": 1}
    assert http.delete("/jobs").json() == {"removed": 2}
    assert client.stats()["pending"] == 0


def test_configure_mail_exposes_mailer_to_handlers(memory_storage):
    transport = RecordingTransport()

    @post("/signup")
    async def signup(mailer: Mailer) -> Dict[str, str]:
        return {"job_id": mailer.queue("new@example.com", "Welcome", "<p>Hi</p>")}

    @get("/pending")
    async def pending(mail_client: Client) -> Dict[str, int]:
        return {"pending": mail_client.stats()["pending"]}

    app = Litestar(
        route_handlers=[signup, pending],
        dependencies={"mailer": mailer_dependency(), "mail_client": mail_client_dependency()},
    )
    queue_client = configure_mail(app, memory_storage, mailer=Mailer(transport))

    with TestClient(app=app) as test_client:
        job_id = test_client.post("/signup").json()["job_id"]
        assert test_client.get("/pending").json() == {"pending": 1}

    assert queue_client.get_job(job_id).payload.to == "new@example.com"
    assert transport.sent == []
