"""
Drives LUIS training to completion by polling the per-model status
"""
import asyncio
import enum
from dataclasses import dataclass, field
from typing import List, Optional

from luis_api.client import LuisApiClient
from luis_api.events import ProgressListener, emit
from luis_api.exceptions import ModelFailure, TrainingFailed
from luis_api.models import TrainingState, TrainingStatus
from logger import get_logger
from metrics import track_stage, training_duration

logger = get_logger(__name__)

DEFAULT_POLLING_INTERVAL = 2.0


class MonitorState(enum.Enum):
    IDLE = "idle"
    TRAINING = "training"
    CONVERGED = "converged"
    FAILED = "failed"


class MonitorStateMachine:
    """Validates monitor state transitions"""

    VALID_TRANSITIONS = {
        MonitorState.IDLE: {MonitorState.TRAINING},
        MonitorState.TRAINING: {MonitorState.CONVERGED, MonitorState.FAILED},
        MonitorState.CONVERGED: set(),  # Terminal state
        MonitorState.FAILED: set(),     # Terminal state
    }

    @classmethod
    def is_valid_transition(cls, from_state: MonitorState, to_state: MonitorState) -> bool:
        return to_state in cls.VALID_TRANSITIONS.get(from_state, set())

    @classmethod
    def is_terminal_state(cls, state: MonitorState) -> bool:
        return len(cls.VALID_TRANSITIONS.get(state, set())) == 0


@dataclass
class TrainingResult:
    state: MonitorState
    statuses: List[TrainingStatus] = field(default_factory=list)
    failures: List[ModelFailure] = field(default_factory=list)
    polls: int = 0


class TrainingMonitor:
    """
    Starts training and waits until every model reaches a terminal state
    (Success, Up to date or Failed).

    The status is polled every ``polling_interval`` seconds, always waiting
    before each poll. There is no overall timeout.
    """

    def __init__(
        self,
        client: LuisApiClient,
        listener: Optional[ProgressListener] = None,
        polling_interval: float = DEFAULT_POLLING_INTERVAL
    ):
        self.client = client
        self.listener = listener
        self.polling_interval = polling_interval
        self.state = MonitorState.IDLE

    def _transition(self, to_state: MonitorState):
        if not MonitorStateMachine.is_valid_transition(self.state, to_state):
            raise RuntimeError(f"Invalid training monitor transition: {self.state.value} -> {to_state.value}")
        logger.debug(f"Training monitor {self.state.value} -> {to_state.value}")
        self.state = to_state

    async def run(self) -> TrainingResult:
        """Train and wait, returning the outcome whether models failed or not"""
        if self.state != MonitorState.IDLE:
            raise RuntimeError("A training monitor can only run once")

        emit(self.listener, 'startTraining')
        initial = await self.client.start_training()
        logger.debug(f"Training started: {[status.state.value for status in initial]}")
        self._transition(MonitorState.TRAINING)

        polls = 0
        while True:
            await asyncio.sleep(self.polling_interval)
            statuses = await self.client.get_training_status()
            polls += 1

            finished = [status for status in statuses if status.state.is_terminal]
            emit(self.listener, 'trainingProgress', len(finished), len(statuses))
            if len(finished) == len(statuses):
                break

        failures = [
            ModelFailure(status.model_id, status.failure_reason)
            for status in statuses
            if status.state == TrainingState.FAILED
        ]
        if failures:
            self._transition(MonitorState.FAILED)
            logger.error(f"{len(failures)} of {len(statuses)} model(s) failed to train")
        else:
            self._transition(MonitorState.CONVERGED)
            emit(self.listener, 'endTraining')
            logger.info(f"Training finished for {len(statuses)} model(s) after {polls} poll(s)")

        return TrainingResult(state=self.state, statuses=statuses, failures=failures, polls=polls)

    @track_stage(training_duration)
    async def train(self) -> TrainingResult:
        """
        Train and wait

        Raises:
            TrainingFailed: carrying every failed model and its reason
        """
        result = await self.run()
        if result.state == MonitorState.FAILED:
            raise TrainingFailed(result.failures)
        return result
