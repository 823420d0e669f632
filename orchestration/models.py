# orchestration/models.py
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field


TERMINAL_STATUSES = frozenset({"success", "failed"})


# ── Source-control side ──────────────────────────────────────────

class PullRequestEvent(BaseModel):
    """Canonical form of an accepted pull_request webhook."""

    model_config = {"frozen": True}

    action          : str
    owner           : str
    repo_name       : str
    commit_sha      : str
    head_ref        : str
    pr_number       : int
    installation_id : int


class Ignored(BaseModel):
    """A webhook we deliberately do nothing with."""

    model_config = {"frozen": True}

    reason: str


# ── CircleCI v2 (pipelines / workflows / jobs) ───────────────────

class PipelineVcs(BaseModel):
    revision      : str = ""
    branch        : Optional[str] = None
    provider_name : Optional[str] = None


class WorkflowRef(BaseModel):
    id: str


class Pipeline(BaseModel):
    id        : str
    number    : Optional[int] = None
    state     : Optional[str] = None
    vcs       : PipelineVcs = Field(default_factory=PipelineVcs)
    workflows : List[WorkflowRef] = Field(default_factory=list)

    @property
    def workflow_ids(self) -> List[str]:
        return [w.id for w in self.workflows]


class Job(BaseModel):
    id         : Optional[str] = None
    job_number : Optional[int] = None
    name       : Optional[str] = None
    status     : str
    type       : Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def failed(self) -> bool:
        return self.status == "failed"


# ── CircleCI v1.1 (legacy builds) ────────────────────────────────

class Action(BaseModel):
    name       : Optional[str] = None
    index      : int = 0
    status     : Optional[str] = None
    output_url : Optional[str] = None
    has_output : bool = False


class Step(BaseModel):
    name    : Optional[str] = None
    actions : List[Action] = Field(default_factory=list)


class Build(BaseModel):
    build_num : int
    status    : Optional[str] = None
    steps     : List[Step] = Field(default_factory=list)


class BuildOutputLine(BaseModel):
    message : str = ""
    type    : Optional[str] = None
    time    : Optional[datetime] = None


# ── Generation-agnostic failure evidence ─────────────────────────

class FailedAction(BaseModel):
    step_name : Optional[str] = None
    index     : int = 0
    output    : str = ""


class FailureEvidence(BaseModel):
    """What the reporter needs to know about one failed job."""

    job_number : int
    job_name   : Optional[str] = None
    actions    : List[FailedAction] = Field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(a.output for a in self.actions)
