import logging
from typing import List
from orchestration.errors import ReportingFailed, UpstreamUnavailable
from orchestration.models import FailedAction, FailureEvidence, Job
from orchestration.state import OrchestrationState

logger = logging.getLogger(__name__)

VCS = "gh"

REPORT_HEADER = "Build Failed :cry: \n"
CODE_FENCE    = "```"


# ── Adapters: one per CircleCI API generation ────────────────────

def evidence_from_job(job: Job) -> FailureEvidence:
    """Seed evidence from the v2 job record (identity only, no logs)."""
    if job.job_number is None:
        raise ReportingFailed(f"failed job {job.name or job.id} has no job number")
    return FailureEvidence(job_number=job.job_number, job_name=job.name)


async def collect_legacy_output(
    circleci,
    evidence  : FailureEvidence,
    owner     : str,
    repo_name : str,
) -> FailureEvidence:
    """
    Fill ``evidence`` with the output of every failed action of the v1.1 build.
    Steps are walked in stored order, then actions within each step.
    """
    build = await circleci.get_build(VCS, owner, repo_name, evidence.job_number)

    actions: List[FailedAction] = []
    for step in build.steps:
        for action in step.actions:
            if action.status != "failed":
                continue
            if not action.output_url:
                logger.warning(
                    "Failed action %r in build %s has no output url",
                    step.name, build.build_num,
                )
                continue
            lines = await circleci.get_build_output(action.output_url)
            actions.append(FailedAction(
                step_name = step.name,
                index     = action.index,
                output    = "".join(line.message for line in lines),
            ))

    return evidence.model_copy(update={"actions": actions})


# ── Rendering + publishing ───────────────────────────────────────

def render_report(evidence: FailureEvidence) -> str:
    return f"{REPORT_HEADER}{CODE_FENCE}\n{evidence.text}\n{CODE_FENCE}"


async def report_job_failure(
    state    : OrchestrationState,
    job      : Job,
    circleci,
    github,
) -> str:
    """
    Build and publish one comment for one failed job.
    Any upstream error becomes ReportingFailed; nothing is dropped silently.
    """
    owner, repo_name = state["owner"], state["repo_name"]

    try:
        evidence = await collect_legacy_output(circleci, evidence_from_job(job), owner, repo_name)
    except UpstreamUnavailable as e:
        raise ReportingFailed(f"could not collect output for job {job.job_number}: {e}") from e

    body = render_report(evidence)

    try:
        await github.create_issue_comment(
            state["installation_id"], owner, repo_name, state["pull_request_number"], body,
        )
    except UpstreamUnavailable as e:
        raise ReportingFailed(
            f"could not comment on {owner}/{repo_name}#{state['pull_request_number']}: {e}"
        ) from e

    logger.info(
        "Posted failure report for job %s (%s, %d failed action(s)) on %s/%s#%s",
        evidence.job_number, evidence.job_name, len(evidence.actions),
        owner, repo_name, state["pull_request_number"],
    )
    return body
