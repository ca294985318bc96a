"""Command line interface for the mail queue."""
from __future__ import annotations

import argparse
import dataclasses
import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Mapping, Optional

import uvicorn

from pymailflow.client import Client
from pymailflow.config import ConnectionConfig, MailConfig, QueueConfig, WorkerConfig
from pymailflow.common.events import LoggingEventSink
from pymailflow.common.exceptions import PyMailFlowException
from pymailflow.dashboard import create_dashboard_app
from pymailflow.execution.performer import Performer
from pymailflow.jobs.send_mail import SEND_MAIL, SendMailHandler
from pymailflow.mail.dkim import dns_record, generate_keys
from pymailflow.mail.mailer import Mailer
from pymailflow.mail.rate_limiter import RateLimiter
from pymailflow.server.worker import Worker
from pymailflow.storage.redis_storage import RedisStorage
from pymailflow.transport.factory import make_transport

logger = logging.getLogger(__name__)


def _when(timestamp: Optional[float]) -> str:
    if timestamp is None:
        return "-"
    return datetime.fromtimestamp(timestamp).isoformat(sep=" ", timespec="seconds")


def create_client(environ: Mapping[str, str]) -> Client:
    queue_config = QueueConfig.from_env(environ)
    storage = RedisStorage.from_config(ConnectionConfig.from_env(environ), queue_config)
    return Client(storage=storage, default_queue=queue_config.default_queue)


def create_mailer(environ: Mapping[str, str], client: Client) -> Mailer:
    mail_config = MailConfig.from_env(environ)
    rate_limiter = None
    if mail_config.rate_limit is not None:
        rate_limiter = RateLimiter.from_config(
            mail_config.rate_limit, redis_client=getattr(client.storage, "redis_client", None)
        )
    return Mailer(
        make_transport(mail_config),
        client=client,
        rate_limiter=rate_limiter,
        from_=mail_config.from_,
        events=LoggingEventSink(),
    )


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pymailflow", description="Manage the mail queue")
    parser.add_argument(
        "--log-level",
        default=os.getenv("PYMAILFLOW_LOG_LEVEL", "INFO"),
        help="Logging level (env: PYMAILFLOW_LOG_LEVEL).",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    work = sub.add_parser("work", help="Process queued mail jobs")
    work.add_argument("queues", nargs="*", help="Queues to work, in priority order.")
    work.add_argument("--sleep", type=float, help="Seconds to wait when no job is available.")
    work.add_argument("--tries", type=int, help="Attempts before a job is marked failed.")
    work.add_argument("--memory", type=int, help="Memory limit in MB.")
    work.add_argument("--timeout", type=float, help="Seconds a single job may run.")
    work.add_argument("--once", action="store_true", help="Process at most one job and exit.")

    list_cmd = sub.add_parser("list", help="List pending jobs of a queue")
    list_cmd.add_argument("queue", nargs="?")

    sub.add_parser("failed", help="List failed jobs")

    retry = sub.add_parser("retry", help="Move failed jobs back to their queue")
    target = retry.add_mutually_exclusive_group(required=True)
    target.add_argument("job_id", nargs="?")
    target.add_argument("--all", action="store_true", help="Retry every failed job.")

    for name, text in (("flush", "Delete all failed jobs"), ("purge", "Delete all pending and failed jobs")):
        cmd = sub.add_parser(name, help=text)
        cmd.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation.")

    clear = sub.add_parser("clear", help="Delete the pending jobs of a queue")
    clear.add_argument("queue", nargs="?")
    clear.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation.")

    recover = sub.add_parser("recover", help="Release jobs whose reservation expired")
    recover.add_argument("queue", nargs="?")

    keygen = sub.add_parser("dkim-keygen", help="Generate a DKIM key pair")
    keygen.add_argument("directory", help="Where dkim_private.key and dkim_public.key are written.")
    keygen.add_argument("--bits", type=int, default=2048)

    send_test = sub.add_parser("send-test", help="Send a test email right away")
    send_test.add_argument("email")
    send_test.add_argument("--subject", default="Test email")

    dashboard = sub.add_parser("dashboard", help="Serve the JSON admin dashboard")
    dashboard.add_argument("--host", default="127.0.0.1")
    dashboard.add_argument("--port", type=int, default=8000)
    dashboard.add_argument("--debug", action="store_true")
    return parser


def _confirm(question: str, args: argparse.Namespace, input_func: Callable[[str], str]) -> bool:
    if getattr(args, "yes", False):
        return True
    try:
        answer = input_func(f"{question} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def cmd_work(args, client: Client, environ: Mapping[str, str], mailer: Optional[Mailer]) -> int:
    config = WorkerConfig.from_env(environ)
    overrides = {
        "sleep": args.sleep,
        "max_tries": args.tries,
        "memory": args.memory,
        "timeout": args.timeout,
    }
    config = dataclasses.replace(config, **{k: v for k, v in overrides.items() if v is not None})
    mailer = mailer or create_mailer(environ, client)
    performer = Performer({SEND_MAIL: SendMailHandler(mailer)})
    worker = Worker(
        client.storage,
        performer,
        config=config,
        queues=args.queues or [client.default_queue],
        events=LoggingEventSink(),
    )
    if args.once:
        processed = worker.run_once()
        print("Processed 1 job" if processed else "No job available")
        return 0
    worker.install_signal_handlers()
    reason = worker.run()
    print(f"Worker stopped: {reason}")
    return 0


def cmd_list(args, client: Client) -> int:
    queue = args.queue or client.default_queue
    jobs = client.list(queue)
    print(f"Queue: {queue} ({len(jobs)} job(s))")
    for job in jobs:
        state = "reserved" if job.is_reserved else "pending"
        print(
            f"{job.id}  {state:<8}  attempts={job.attempts}  available={_when(job.available_at)}  "
            f"to={job.payload.to}  subject={job.payload.subject!r}"
        )
    return 0


def cmd_failed(args, client: Client) -> int:
    failed = client.failed()
    print(f"Failed jobs: {len(failed)}")
    for record in failed:
        print(
            f"{record.id}  queue={record.job.queue}  attempts={record.job.attempts}  "
            f"failed={_when(record.failed_at)}  error={record.exception_message}"
        )
    return 0


def cmd_retry(args, client: Client) -> int:
    if args.all:
        print(f"Total retried: {client.retry('all')} jobs")
        return 0
    if client.retry(args.job_id):
        print(f"Job queued for retry: {args.job_id}")
        return 0
    print(f"Failed to retry job: {args.job_id} (not found)", file=sys.stderr)
    return 1


def cmd_flush(args, client: Client, input_func) -> int:
    count = len(client.failed())
    if count == 0:
        print("No failed jobs to flush")
        return 0
    if not _confirm(f"Delete {count} failed job(s)?", args, input_func):
        print("Aborted")
        return 1
    print(f"Flushed {client.flush()} failed jobs")
    return 0


def cmd_clear(args, client: Client, input_func) -> int:
    queue = args.queue or client.default_queue
    if not _confirm(f"Delete all pending jobs of queue {queue}?", args, input_func):
        print("Aborted")
        return 1
    print(f"Cleared {client.clear(queue)} jobs from {queue}")
    return 0


def cmd_purge(args, client: Client, input_func) -> int:
    stats = client.stats()
    total = stats["pending"] + stats["failed"]
    if total == 0:
        print("No jobs to purge")
        return 0
    print(f"- Pending jobs: {stats['pending']}")
    print(f"- Failed jobs: {stats['failed']}")
    if not _confirm("Are you sure?", args, input_func):
        print("Aborted")
        return 1
    print(f"Total jobs purged: {client.purge()}")
    return 0


def cmd_recover(args, client: Client) -> int:
    queue = args.queue or client.default_queue
    recovered = client.recover(queue)
    if not recovered:
        print("No expired reservations recovered.")
        return 0
    print(f"Recovered {len(recovered)} jobs:")
    for job_id in recovered:
        print(f"- {job_id}")
    return 0


def cmd_dkim_keygen(args) -> int:
    directory = Path(args.directory)
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        print(f"Failed to create directory: {directory} ({e})", file=sys.stderr)
        return 1
    private_pem, public_pem = generate_keys(args.bits)
    private_path = directory / "dkim_private.key"
    public_path = directory / "dkim_public.key"
    private_path.write_text(private_pem)
    private_path.chmod(0o600)
    public_path.write_text(public_pem)
    print(f"DKIM private key saved to: {private_path}")
    print(f"DKIM public key saved to: {public_path}")
    print(f"DNS TXT record: {dns_record(public_pem)}")
    return 0


def cmd_send_test(args, client: Client, environ: Mapping[str, str], mailer: Optional[Mailer]) -> int:
    mailer = mailer or create_mailer(environ, client)
    print(f"Sending test email to: {args.email}")
    mailer.send(
        args.email,
        args.subject,
        "<p>This is a test email sent by pymailflow.</p>",
    )
    print("Test email sent successfully!")
    return 0


def cmd_dashboard(args, client: Client) -> int:
    app = create_dashboard_app(client, debug=args.debug)
    uvicorn.run(app, host=args.host, port=args.port)
    return 0


def main(
    argv: Optional[List[str]] = None,
    client: Optional[Client] = None,
    mailer: Optional[Mailer] = None,
    environ: Optional[Mapping[str, str]] = None,
    input_func: Callable[[str], str] = input,
) -> int:
    args = build_arg_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    environ = os.environ if environ is None else environ

    try:
        if args.command == "dkim-keygen":
            return cmd_dkim_keygen(args)
        client = client or create_client(environ)
        if args.command == "work":
            return cmd_work(args, client, environ, mailer)
        if args.command == "list":
            return cmd_list(args, client)
        if args.command == "failed":
            return cmd_failed(args, client)
        if args.command == "retry":
            return cmd_retry(args, client)
        if args.command == "flush":
            return cmd_flush(args, client, input_func)
        if args.command == "clear":
            return cmd_clear(args, client, input_func)
        if args.command == "purge":
            return cmd_purge(args, client, input_func)
        if args.command == "recover":
            return cmd_recover(args, client)
        if args.command == "send-test":
            return cmd_send_test(args, client, environ, mailer)
        if args.command == "dashboard":
            return cmd_dashboard(args, client)
    except (PyMailFlowException, ValueError) as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 1


if __name__ == "__main__":
    sys.exit(main())
