"""Shared fakes for the CircleCI and GitHub collaborators."""

from typing import Dict, List

import pytest

from orchestration.errors import ConfigAbsent, UpstreamUnavailable
from orchestration.models import (
    Action,
    Build,
    BuildOutputLine,
    Job,
    Pipeline,
    PipelineVcs,
    Step,
    WorkflowRef,
)
from orchestration.state import OrchestrationState

SHA = "a" * 40
OTHER_SHA = "b" * 40


def make_job(number: int, status: str, name: str = None) -> Job:
    return Job(id=f"job-{number}", job_number=number, name=name or f"job-{number}", status=status)


def make_pipeline(pipeline_id: str, revision: str, workflow_ids=()) -> Pipeline:
    return Pipeline(
        id=pipeline_id,
        vcs=PipelineVcs(revision=revision),
        workflows=[WorkflowRef(id=w) for w in workflow_ids],
    )


def failed_build(number: int, *outputs: str) -> Build:
    """A build with one step whose actions failed with the given output urls."""
    return Build(
        build_num=number,
        steps=[
            Step(
                name="run tests",
                actions=[Action(index=i, status="failed", output_url=url) for i, url in enumerate(outputs)],
            )
        ],
    )


class FakeCircleCI:
    def __init__(self):
        self.pipelines: List[Pipeline] = []
        self.jobs: Dict[str, List[Job]] = {}
        self.builds: Dict[int, Build] = {}
        self.outputs: Dict[str, List[BuildOutputLine]] = {}
        self.failing: set = set()
        self.calls: list = []

    def _maybe_fail(self, key):
        if key in self.failing:
            raise UpstreamUnavailable(f"{key} unavailable", 503)

    async def get_project_pipelines(self, vcs, owner, repo):
        self.calls.append(("pipelines", vcs, owner, repo))
        self._maybe_fail("pipelines")
        return list(self.pipelines)

    async def get_pipeline(self, pipeline_id):
        self.calls.append(("pipeline", pipeline_id))
        self._maybe_fail("pipeline")
        for pipeline in self.pipelines:
            if pipeline.id == pipeline_id:
                return pipeline
        raise UpstreamUnavailable("Pipeline not found", 404)

    async def get_workflow_jobs(self, workflow_id):
        self.calls.append(("jobs", workflow_id))
        self._maybe_fail(("jobs", workflow_id))
        return list(self.jobs.get(workflow_id, []))

    async def get_build(self, vcs, owner, repo, build_num):
        self.calls.append(("build", build_num))
        self._maybe_fail(("build", build_num))
        return self.builds[build_num]

    async def get_build_output(self, output_url):
        self.calls.append(("output", output_url))
        self._maybe_fail(("output", output_url))
        return list(self.outputs.get(output_url, []))

    async def close(self):
        pass

    def job_fetches(self):
        return [c[1] for c in self.calls if c[0] == "jobs"]


class FakeGitHub:
    def __init__(self, config_present: bool = True):
        self.config_present = config_present
        self.contents_error = None
        self.comment_error = None
        self.comments: list = []
        self.contents_calls: list = []

    async def get_contents(self, installation_id, owner, repo, path, ref=None):
        self.contents_calls.append((installation_id, owner, repo, path, ref))
        if self.contents_error:
            raise self.contents_error
        if not self.config_present:
            raise ConfigAbsent(f"{path} not found")
        return {"path": path}

    async def create_issue_comment(self, installation_id, owner, repo, number, body):
        if self.comment_error:
            raise self.comment_error
        self.comments.append({
            "installation_id": installation_id,
            "owner": owner,
            "repo": repo,
            "number": number,
            "body": body,
        })
        return {"id": len(self.comments)}

    async def close(self):
        pass


@pytest.fixture
def circleci():
    return FakeCircleCI()


@pytest.fixture
def github():
    return FakeGitHub()


@pytest.fixture
def state() -> OrchestrationState:
    return {
        "repo_name": "widgets",
        "owner": "acme",
        "pull_request_number": 7,
        "installation_id": 99,
        "commit_sha": SHA,
        "pipeline_id": "",
        "workflow_ids": [],
        "workflow_jobs": {},
        "all_jobs_done": False,
        "wait_for_jobs_retry_count": 0,
        "wait_for_jobs_wait_time": 0,
    }
