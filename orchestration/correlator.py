import logging
from orchestration.errors import PipelineNotFound
from orchestration.state import OrchestrationState

logger = logging.getLogger(__name__)

VCS = "gh"


async def find_pipeline_id(circleci, owner: str, repo_name: str, commit_sha: str) -> str:
    """
    Return the id of the pipeline CircleCI ran for ``commit_sha``.

    Only exact SHA matches count. A miss usually means CircleCI hasn't
    ingested the push yet, so PipelineNotFound is meant to be retried.
    """
    pipelines = await circleci.get_project_pipelines(VCS, owner, repo_name)

    for pipeline in pipelines:
        if pipeline.vcs.revision == commit_sha:
            logger.info("Found pipeline %s for %s/%s@%s", pipeline.id, owner, repo_name, commit_sha[:7])
            return pipeline.id

    logger.info(
        "No pipeline yet for %s/%s@%s (scanned %d)",
        owner, repo_name, commit_sha[:7], len(pipelines),
    )
    raise PipelineNotFound(f"didn't find a pipeline for commit {commit_sha} yet")


async def correlate(state: OrchestrationState, circleci) -> OrchestrationState:
    """Fill in ``pipeline_id`` on a copy of the state."""
    pipeline_id = await find_pipeline_id(
        circleci,
        owner      = state["owner"],
        repo_name  = state["repo_name"],
        commit_sha = state["commit_sha"],
    )
    return {**state, "pipeline_id": pipeline_id}
