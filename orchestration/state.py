# orchestration/state.py
from typing import TypedDict, List, Dict, Optional
from orchestration.models import Job, PullRequestEvent


class OrchestrationState(TypedDict):
    # ── Pull request identity ────────────────────────────
    repo_name           : str
    owner               : str
    pull_request_number : int
    installation_id     : int
    commit_sha          : str

    # ── CircleCI correlation ─────────────────────────────
    pipeline_id   : str               # "" until correlated
    workflow_ids  : List[str]         # declared order, [] until resolved
    workflow_jobs : Dict[str, List[Job]]  # latest snapshot per workflow

    # ── Polling control ──────────────────────────────────
    all_jobs_done             : bool
    wait_for_jobs_retry_count : int
    wait_for_jobs_wait_time   : int   # seconds


def initial_state(event: PullRequestEvent) -> OrchestrationState:
    return {
        "repo_name"                 : event.repo_name,
        "owner"                     : event.owner,
        "pull_request_number"       : event.pr_number,
        "installation_id"           : event.installation_id,
        "commit_sha"                : event.commit_sha,
        "pipeline_id"               : "",
        "workflow_ids"              : [],
        "workflow_jobs"             : {},
        "all_jobs_done"             : False,
        "wait_for_jobs_retry_count" : 0,
        "wait_for_jobs_wait_time"   : 0,
    }


def to_wire(state: OrchestrationState) -> dict:
    """JSON-ready form handed to the scheduler between invocations."""
    return {
        "repo_name"                 : state["repo_name"],
        "owner"                     : state["owner"],
        "pull_request_number"       : state["pull_request_number"],
        "installation_id"           : state["installation_id"],
        "commit_sha"                : state["commit_sha"],
        "pipeline_id"               : state.get("pipeline_id", ""),
        "workflow_ids"              : list(state.get("workflow_ids") or []),
        "workflow_jobs"             : {
            workflow_id: [job.model_dump(exclude_none=True) for job in jobs]
            for workflow_id, jobs in (state.get("workflow_jobs") or {}).items()
        },
        "all_jobs_done"             : state.get("all_jobs_done", False),
        "wait_for_jobs_retry_count" : state.get("wait_for_jobs_retry_count", 0),
        "wait_for_jobs_wait_time"   : state.get("wait_for_jobs_wait_time", 0),
    }


def from_wire(data: dict) -> OrchestrationState:
    """
    Rebuild the state from the scheduler's record.
    Identity fields are required; everything else defaults to a fresh run.
    """
    missing = [
        key for key in ("repo_name", "owner", "pull_request_number", "installation_id", "commit_sha")
        if key not in data
    ]
    if missing:
        raise ValueError(f"orchestration record is missing {', '.join(missing)}")

    workflow_jobs: Dict[str, List[Job]] = {}
    for workflow_id, jobs in (data.get("workflow_jobs") or {}).items():
        workflow_jobs[workflow_id] = [Job.model_validate(j) for j in jobs or []]

    return {
        "repo_name"                 : data["repo_name"],
        "owner"                     : data["owner"],
        "pull_request_number"       : int(data["pull_request_number"]),
        "installation_id"           : int(data["installation_id"]),
        "commit_sha"                : data["commit_sha"],
        "pipeline_id"               : data.get("pipeline_id") or "",
        "workflow_ids"              : list(data.get("workflow_ids") or []),
        "workflow_jobs"             : workflow_jobs,
        "all_jobs_done"             : bool(data.get("all_jobs_done", False)),
        "wait_for_jobs_retry_count" : int(data.get("wait_for_jobs_retry_count") or 0),
        "wait_for_jobs_wait_time"   : int(data.get("wait_for_jobs_wait_time") or 0),
    }


def job_summary(state: OrchestrationState, workflow_id: Optional[str] = None) -> Dict[str, int]:
    """Count jobs by status, across every workflow or just one."""
    counts: Dict[str, int] = {}
    workflows = state.get("workflow_jobs") or {}
    ids = [workflow_id] if workflow_id else list(workflows)
    for wid in ids:
        for job in workflows.get(wid, []):
            counts[job.status] = counts.get(job.status, 0) + 1
    return counts
