"""Litestar application factory for the mail queue dashboard."""

from litestar import Litestar
from litestar.di import Provide
from litestar.datastructures import State

from pymailflow.client import Client
from .controllers.core import CoreController
from .controllers.jobs import JobsController, FailedController


async def get_client(state: State) -> Client:
    return state.client


def create_dashboard_app(client: Client, debug: bool = False) -> Litestar:
    """Create the Litestar application for the dashboard.

    Args:
        client: A queue client instance.
        debug: Enables Litestar debug responses.

    Returns:
        A Litestar application serving JSON.
    """
    return Litestar(
        route_handlers=[CoreController, JobsController, FailedController],
        state=State({"client": client}),
        dependencies={"client": Provide(get_client)},
        debug=debug,
    )
