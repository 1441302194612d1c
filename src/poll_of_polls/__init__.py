"""Poll of polls - aggregate pollster data and fit a hierarchical pollster model."""

__version__ = "0.1.0"

from poll_of_polls.aggregate import aggregate_responses as aggregate_responses
from poll_of_polls.models import AggregatedRow as AggregatedRow
from poll_of_polls.models import PollResponse as PollResponse
from poll_of_polls.pollsters import PollsterIndex as PollsterIndex
from poll_of_polls.simulate import simulate_polls as simulate_polls
