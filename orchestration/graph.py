import logging
from typing import Literal
from langchain_core.runnables import RunnableConfig
from langgraph.graph import StateGraph, END
from orchestration.reporter import report_job_failure
from orchestration.state import OrchestrationState, job_summary

logger = logging.getLogger(__name__)


def _collaborators(config: RunnableConfig):
    configurable = config.get("configurable", {})
    return configurable["circleci"], configurable.get("github")


# ── Nodes ────────────────────────────────────────────────────────

async def backoff_node(state: OrchestrationState) -> dict:
    """Wait time for the next invocation is 2^(retries so far)."""
    retry_count = state.get("wait_for_jobs_retry_count", 0)
    wait_time   = 2 ** retry_count

    logger.info(
        "Polling %s/%s@%s (attempt %d, next wait %ds)",
        state["owner"], state["repo_name"], state["commit_sha"][:7], retry_count + 1, wait_time,
    )
    return {
        "wait_for_jobs_wait_time"   : wait_time,
        "wait_for_jobs_retry_count" : retry_count + 1,
    }


async def resolve_workflows_node(state: OrchestrationState, config: RunnableConfig) -> dict:
    """Populate workflow ids from the pipeline, once."""
    circleci, _ = _collaborators(config)

    pipeline = await circleci.get_pipeline(state["pipeline_id"])
    workflow_ids = pipeline.workflow_ids
    if not workflow_ids:
        logger.warning("Pipeline %s has no workflows", pipeline.id)

    logger.info("Pipeline %s → workflows %s", pipeline.id, workflow_ids)
    return {"workflow_ids": workflow_ids}


async def poll_jobs_node(state: OrchestrationState, config: RunnableConfig) -> dict:
    """
    First pass: refresh each workflow's jobs in declared order.
    Stops at the first workflow that still has a non-terminal job.
    """
    circleci, _ = _collaborators(config)
    workflow_jobs = dict(state.get("workflow_jobs") or {})

    for workflow_id in state["workflow_ids"]:
        jobs = await circleci.get_workflow_jobs(workflow_id)
        workflow_jobs[workflow_id] = jobs

        pending = [job for job in jobs if not job.is_terminal]
        if pending:
            logger.info(
                "Workflow %s still running (%s: %s)",
                workflow_id, pending[0].name, pending[0].status,
            )
            return {"workflow_jobs": workflow_jobs, "all_jobs_done": False}

    return {"workflow_jobs": workflow_jobs, "all_jobs_done": False}


async def report_failures_node(state: OrchestrationState, config: RunnableConfig) -> dict:
    """
    Second pass: re-fetch every workflow and report each failed job.
    Only marks the run done once every report went out.
    """
    circleci, github = _collaborators(config)

    for workflow_id in state["workflow_ids"]:
        jobs = await circleci.get_workflow_jobs(workflow_id)
        for job in jobs:
            if job.failed:
                logger.info("Sending failure logs for job %s (%s) to GitHub", job.job_number, job.name)
                await report_job_failure(state, job, circleci, github)

    logger.info("All jobs done for %s/%s@%s: %s",
                state["owner"], state["repo_name"], state["commit_sha"][:7], job_summary(state))
    return {"all_jobs_done": True}


# ── Conditional Routing ──────────────────────────────────────────

def route_after_backoff(state: OrchestrationState) -> Literal["resolve_workflows", "poll_jobs"]:
    if not state.get("workflow_ids"):
        return "resolve_workflows"
    return "poll_jobs"


def route_after_poll(state: OrchestrationState) -> Literal["report_failures", "__end__"]:
    workflow_jobs = state.get("workflow_jobs") or {}
    for workflow_id in state["workflow_ids"]:
        if any(not job.is_terminal for job in workflow_jobs.get(workflow_id, [])):
            return END
    return "report_failures"


# ── Build Graph ──────────────────────────────────────────────────

def build_graph():
    graph = StateGraph(OrchestrationState)

    graph.add_node("backoff",           backoff_node)
    graph.add_node("resolve_workflows", resolve_workflows_node)
    graph.add_node("poll_jobs",         poll_jobs_node)
    graph.add_node("report_failures",   report_failures_node)

    graph.set_entry_point("backoff")

    graph.add_conditional_edges(
        "backoff",
        route_after_backoff,
        {
            "resolve_workflows" : "resolve_workflows",
            "poll_jobs"         : "poll_jobs",
        }
    )
    graph.add_edge("resolve_workflows", "poll_jobs")
    graph.add_conditional_edges(
        "poll_jobs",
        route_after_poll,
        {
            "report_failures" : "report_failures",
            END               : END,
        }
    )
    graph.add_edge("report_failures", END)

    compiled = graph.compile()
    logger.debug("Poller graph compiled — 4 nodes, conditional routing")
    return compiled


poller_graph = build_graph()


async def wait_for_jobs(state: OrchestrationState, circleci, github) -> OrchestrationState:
    """
    Run one polling invocation and return the updated state.

    The caller is expected to re-invoke after ``wait_for_jobs_wait_time``
    seconds while ``all_jobs_done`` is false.
    """
    if state.get("all_jobs_done"):
        raise ValueError("all jobs are already done; polling is finished for this pull request")
    if not state.get("pipeline_id"):
        raise ValueError("pipeline_id must be resolved before polling jobs")

    result = await poller_graph.ainvoke(
        state,
        config={"configurable": {"circleci": circleci, "github": github}},
    )
    return OrchestrationState(**result)
