import asyncio
import logging
from typing import Awaitable, Callable, Optional, Protocol
from orchestration.correlator import correlate
from orchestration.errors import PipelineNotFound, ReportingFailed, UpstreamUnavailable
from orchestration.graph import wait_for_jobs
from orchestration.state import OrchestrationState

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class Scheduler(Protocol):
    """
    Anything that can drive an orchestration to completion: re-invoke the
    correlator and poller with the caller's backoff, one invocation at a
    time per pull request.
    """

    async def start(self, state: OrchestrationState) -> None:
        ...


class InProcessScheduler:
    """
    Runs the whole correlate → poll → report loop inside this process.

    Used from FastAPI background tasks. Between invocations it sleeps for the
    interval the poller asked for; the core itself never sleeps.
    """

    def __init__(
        self,
        circleci,
        github,
        max_poll_retries        : int = 12,
        max_correlation_retries : int = 10,
        correlation_interval    : float = 5.0,
        sleep                   : Optional[Sleep] = None,
    ):
        self.circleci = circleci
        self.github   = github
        self.max_poll_retries        = max_poll_retries
        self.max_correlation_retries = max_correlation_retries
        self.correlation_interval    = correlation_interval
        self.sleep = sleep or asyncio.sleep

    async def start(self, state: OrchestrationState) -> None:
        label = f"{state['owner']}/{state['repo_name']}#{state['pull_request_number']}"
        try:
            await self.run(state)
        except ReportingFailed as e:
            logger.error("Failure report for %s was not delivered: %s", label, e)

    async def run(self, state: OrchestrationState) -> OrchestrationState:
        """Drive ``state`` until all jobs are done or a retry ceiling is hit."""
        if not state.get("pipeline_id"):
            state = await self._correlate(state)
            if not state.get("pipeline_id"):
                return state

        while not state["all_jobs_done"]:
            if state["wait_for_jobs_retry_count"] >= self.max_poll_retries:
                logger.warning(
                    "Giving up on pipeline %s after %d polls",
                    state["pipeline_id"], state["wait_for_jobs_retry_count"],
                )
                return state

            try:
                state = await wait_for_jobs(state, self.circleci, self.github)
            except UpstreamUnavailable as e:
                # a failed invocation returns no state; advance the backoff here
                retry_count = state["wait_for_jobs_retry_count"]
                state = {
                    **state,
                    "wait_for_jobs_wait_time"   : 2 ** retry_count,
                    "wait_for_jobs_retry_count" : retry_count + 1,
                }
                logger.warning("Polling pipeline %s failed, will retry: %s", state["pipeline_id"], e)

            if not state["all_jobs_done"] and state["wait_for_jobs_retry_count"] < self.max_poll_retries:
                await self.sleep(state["wait_for_jobs_wait_time"])

        return state

    async def _correlate(self, state: OrchestrationState) -> OrchestrationState:
        for attempt in range(1, self.max_correlation_retries + 1):
            try:
                return await correlate(state, self.circleci)
            except (PipelineNotFound, UpstreamUnavailable) as e:
                logger.info("Correlation attempt %d/%d: %s", attempt, self.max_correlation_retries, e)
            if attempt < self.max_correlation_retries:
                await self.sleep(self.correlation_interval)

        logger.warning(
            "No pipeline found for %s/%s@%s, abandoning",
            state["owner"], state["repo_name"], state["commit_sha"][:7],
        )
        return state
