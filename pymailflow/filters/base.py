# pymailflow/filters/base.py
from abc import ABC


class JobFilter(ABC):
    """
    Hooks around the state change of a processed job.

    ``on_state_election`` may replace the candidate state before it is applied;
    ``on_state_applied`` runs once the store reflects the final state.
    """

    def on_state_election(self, elect_state_context):
        pass

    def on_state_applied(self, elect_state_context):
        pass
