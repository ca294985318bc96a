"""Litestar integration helpers: enqueue mail from request handlers."""

from __future__ import annotations

from litestar import Litestar
from litestar.datastructures import State
from litestar.di import Provide

from pymailflow.client import Client
from pymailflow.mail.mailer import Mailer
from pymailflow.storage.base import JobStorage


def get_mail_client(state: State) -> Client:
    return state.mail_client


def get_mailer(state: State) -> Mailer:
    return state.mailer


def mail_client_dependency() -> Provide:
    return Provide(get_mail_client, sync_to_thread=False)


def mailer_dependency() -> Provide:
    return Provide(get_mailer, sync_to_thread=False)


def configure_mail(app: Litestar, storage: JobStorage, mailer: Mailer | None = None) -> Client:
    """Attaches a queue client (and optionally a mailer) to the app state."""
    client = Client(storage)
    app.state.mail_client = client
    if mailer is not None:
        if mailer.client is None:
            mailer.client = client
        app.state.mailer = mailer
    return client
