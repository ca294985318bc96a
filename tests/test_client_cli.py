import stat

import pytest
from litestar.testing import TestClient

from conftest import RecordingTransport
from pymailflow.cli import main
from pymailflow.client import Client
from pymailflow.common.exceptions import TransportError
from pymailflow.common.job import MailPayload
from pymailflow.mail.dkim import DkimSigner
from pymailflow.mail.mailer import Mailer


@pytest.fixture
def client(memory_storage):
    return Client(storage=memory_storage)


def _failed_job(client, to="a@example.com", queue=None):
    client.enqueue(MailPayload(to=to, subject="Hi", content="Hello"), queue=queue)
    job = client.storage.reserve(queue or client.default_queue)
    client.storage.fail(job.id, "SMTP error: 550")
    return job.id


def _no_input(prompt):
    raise AssertionError("unexpected confirmation prompt")


# --- Client ---

def test_client_enqueues_to_default_queue(client, payload):
    job_id = client.enqueue(payload)

    assert [job.id for job in client.list()] == [job_id]
    assert client.get_job(job_id).payload.to == "a@example.com"


def test_client_stats_include_default_queue(client, payload):
    assert client.stats() == {"queues": {"emails": 0}, "pending": 0, "failed": 0}

    client.enqueue(payload, queue="priority")
    client.enqueue(payload)
    _failed_job(client)

    assert client.stats() == {"queues": {"emails": 1, "priority": 1}, "pending": 2, "failed": 1}


def test_client_retry_single_and_all(client):
    first = _failed_job(client)
    _failed_job(client, to="b@example.com")

    assert client.retry("job_missing") == 0
    assert client.retry(first) == 1
    assert client.get_job(first).attempts == 0
    assert client.retry("all") == 1
    assert client.failed() == []
    assert len(client.list()) == 2


def test_client_purge_removes_pending_and_failed(client, payload):
    client.enqueue(payload)
    client.enqueue(payload, queue="priority")
    _failed_job(client)

    assert client.purge() == 3
    assert client.stats()["pending"] == 0
    assert client.stats()["failed"] == 0


def test_client_failed_dict(client):
    job_id = _failed_job(client)

    record = client.failed_dict(client.failed()[0])

    assert record["id"] == job_id
    assert record["queue"] == "emails"
    assert record["attempts"] == 1
    assert record["exception_message"] == "SMTP error: 550"
    assert record["job"]["payload"]["to"] == "a@example.com"


# --- CLI ---

def test_cli_list(client, payload, capsys):
    job_id = client.enqueue(payload)

    assert main(["list"], client=client) == 0

    out = capsys.readouterr().out
    assert "Queue: emails (1 job(s))" in out
    assert job_id in out
    assert "pending" in out


def test_cli_failed(client, capsys):
    job_id = _failed_job(client)

    assert main(["failed"], client=client) == 0

    out = capsys.readouterr().out
    assert "Failed jobs: 1" in out
    assert job_id in out
    assert "SMTP error: 550" in out


def test_cli_retry_one(client, capsys):
    job_id = _failed_job(client)

    assert main(["retry", job_id], client=client) == 0

    assert f"Job queued for retry: {job_id}" in capsys.readouterr().out
    assert client.failed() == []


def test_cli_retry_missing_job_fails(client, capsys):
    assert main(["retry", "job_missing"], client=client) == 1

    assert "not found" in capsys.readouterr().err


def test_cli_retry_all(client, capsys):
    _failed_job(client)
    _failed_job(client)

    assert main(["retry", "--all"], client=client) == 0

    assert "Total retried: 2 jobs" in capsys.readouterr().out


def test_cli_flush_asks_for_confirmation(client, capsys):
    _failed_job(client)

    assert main(["flush"], client=client, input_func=lambda prompt: "n") == 1
    assert len(client.failed()) == 1

    assert main(["flush"], client=client, input_func=lambda prompt: "y") == 0
    assert client.failed() == []
    assert "Flushed 1 failed jobs" in capsys.readouterr().out


def test_cli_flush_with_nothing_to_do(client, capsys):
    assert main(["flush"], client=client, input_func=_no_input) == 0
    assert "No failed jobs to flush" in capsys.readouterr().out


def test_cli_purge_with_yes(client, payload, capsys):
    client.enqueue(payload)
    _failed_job(client)

    assert main(["purge", "--yes"], client=client, input_func=_no_input) == 0

    out = capsys.readouterr().out
    assert "- Pending jobs: 1" in out
    assert "- Failed jobs: 1" in out
    assert "Total jobs purged: 2" in out


def test_cli_confirmation_on_closed_stdin_aborts(client, payload):
    client.enqueue(payload)

    def closed(prompt):
        raise EOFError

    assert main(["clear"], client=client, input_func=closed) == 1
    assert len(client.list()) == 1


def test_cli_clear_named_queue(client, payload, capsys):
    client.enqueue(payload, queue="priority")
    client.enqueue(payload)

    assert main(["clear", "priority", "-y"], client=client) == 0

    assert "Cleared 1 jobs from priority" in capsys.readouterr().out
    assert client.list("priority") == []
    assert len(client.list()) == 1


def test_cli_recover_expired_reservation(client, payload, clock, capsys):
    job_id = client.enqueue(payload)
    client.storage.reserve("emails")
    clock.advance(91)

    assert main(["recover"], client=client) == 0

    out = capsys.readouterr().out
    assert "Recovered 1 jobs:" in out
    assert job_id in out
    assert not client.get_job(job_id).is_reserved


def test_cli_dkim_keygen(tmp_path, capsys):
    target = tmp_path / "keys"

    assert main(["dkim-keygen", str(target), "--bits", "1024"]) == 0

    private_key = target / "dkim_private.key"
    public_key = target / "dkim_public.key"
    assert stat.S_IMODE(private_key.stat().st_mode) == 0o600
    assert public_key.read_text().startswith("-----BEGIN PUBLIC KEY-----")
    assert "DNS TXT record: v=DKIM1; k=rsa; p=" in capsys.readouterr().out

    headers = {"From": "a@example.com", "Subject": "Hi"}
    signature = DkimSigner(private_key.read_text(), "default", "example.com").sign(headers, "Hello")
    assert DkimSigner.verify(headers, "Hello", signature, public_key.read_text())


def test_cli_send_test(client, capsys):
    transport = RecordingTransport()

    assert main(["send-test", "a@example.com"], client=client, mailer=Mailer(transport)) == 0

    assert transport.sent[0].subject == "Test email"
    assert "Test email sent successfully!" in capsys.readouterr().out


def test_cli_send_test_reports_errors(client, capsys):
    assert main(["send-test", "nobody"], client=client, mailer=Mailer(RecordingTransport())) == 1

    assert "Invalid recipient" in capsys.readouterr().err


def test_cli_work_once_delivers_queued_mail(client, payload, capsys):
    transport = RecordingTransport()
    job_id = client.enqueue(payload)

    assert main(["work", "--once"], client=client, mailer=Mailer(transport), environ={}) == 0

    assert "Processed 1 job" in capsys.readouterr().out
    assert transport.sent[0].to == "a@example.com"
    assert client.get_job(job_id) is None


def test_cli_work_once_with_empty_queue(client, capsys):
    assert main(["work", "--once"], client=client, mailer=Mailer(RecordingTransport()), environ={}) == 0

    assert "No job available" in capsys.readouterr().out


def test_cli_work_once_retries_failed_delivery(client, payload, clock):
    job_id = client.enqueue(payload)
    mailer = Mailer(RecordingTransport(fail_with=TransportError("Connection error: refused")))

    assert main(["work", "--once", "--tries", "2"], client=client, mailer=mailer, environ={}) == 0

    job = client.get_job(job_id)
    assert job.attempts == 1
    assert job.available_at == clock() + 5


def test_cli_work_rejects_timeout_longer_than_reservation(client, payload, capsys):
    client.enqueue(payload)
    transport = RecordingTransport()

    assert main(["work", "--once", "--timeout", "120"], client=client, mailer=Mailer(transport), environ={}) == 1

    assert "reservation timeout" in capsys.readouterr().err
    assert transport.sent == []
    assert client.storage.size("emails") == 1


def test_cli_dashboard_serves_app(client, payload, monkeypatch):
    served = {}

    def fake_run(app, host, port):
        served.update(app=app, host=host, port=port)

    monkeypatch.setattr("pymailflow.cli.uvicorn.run", fake_run)
    client.enqueue(payload)

    assert main(["dashboard", "--port", "9000"], client=client) == 0

    assert (served["host"], served["port"]) == ("127.0.0.1", 9000)
    with TestClient(app=served["app"]) as http:
        assert http.get("/").json()["pending"] == 1
