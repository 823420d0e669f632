import hmac
import hashlib
import json
import logging
from typing import Mapping, Union
from fastapi import APIRouter, Request, HTTPException, BackgroundTasks
from orchestration.correlator import correlate
from orchestration.errors import (
    ConfigAbsent,
    FeedbackError,
    InvalidRequest,
    PipelineNotFound,
    ReportingFailed,
    Unauthorized,
    UpstreamUnavailable,
)
from orchestration.graph import wait_for_jobs
from orchestration.models import Ignored, PullRequestEvent
from orchestration.state import from_wire, initial_state, to_wire

logger = logging.getLogger(__name__)

router = APIRouter()

EVENT_HEADER       = "x-github-event"
SIGNATURE_HEADERS  = ("x-hub-signature-256", "x-hub-signature")
SIGNATURE_ALGOS    = {"sha256": hashlib.sha256, "sha1": hashlib.sha1}
HANDLED_ACTIONS    = ("opened", "synchronize")

NO_CONFIG_COMMENT = (
    "You don't seem to have a .circleci/config.yml file in your repo\n"
    " Register with CircleCI to use this GITHUB APP."
)


# ── Event Normalizer ─────────────────────────────────────────────

def verify_signature(payload: bytes, signature: str, secret: str) -> bool:
    """Check a ``<algo>=<hexdigest>`` header against the HMAC of ``payload``."""
    if not signature or "=" not in signature:
        return False
    algo, _, digest = signature.partition("=")
    digestmod = SIGNATURE_ALGOS.get(algo)
    if digestmod is None:
        return False
    expected = hmac.new(secret.encode(), payload, digestmod).hexdigest()
    return hmac.compare_digest(expected.encode(), digest.encode("utf-8", "surrogateescape"))


def normalize_event(
    method  : str,
    headers : Mapping[str, str],
    body    : bytes,
    secret  : str,
) -> Union[PullRequestEvent, Ignored]:
    """
    Gate an inbound webhook.

    Returns a PullRequestEvent for opened/synchronize pull requests and
    Ignored for everything else. Raises InvalidRequest for malformed
    requests and Unauthorized when the signature doesn't match.
    """
    headers = {k.lower(): v for k, v in headers.items()}

    if method.upper() != "POST":
        raise InvalidRequest(f"{method} is not accepted, webhooks must be POSTed")

    event_kind = headers.get(EVENT_HEADER)
    if not event_kind:
        raise InvalidRequest("X-GitHub-Event header is missing")

    signature = next((headers[h] for h in SIGNATURE_HEADERS if headers.get(h)), None)
    if not signature:
        raise InvalidRequest("X-Hub-Signature header is missing")

    if not verify_signature(body, signature, secret):
        raise Unauthorized("HMAC verification failed, this request might not be coming from GitHub")

    if event_kind != "pull_request":
        return Ignored(reason=f"event {event_kind} is not handled")

    try:
        payload = json.loads(body)
        action  = payload.get("action", "")
    except (ValueError, AttributeError) as e:
        raise InvalidRequest(f"body is not a JSON object: {e}") from e

    if action not in HANDLED_ACTIONS:
        return Ignored(reason=f"pull_request action {action or '<none>'} is not handled")

    try:
        return PullRequestEvent(
            action          = action,
            owner           = payload["repository"]["owner"]["login"],
            repo_name       = payload["repository"]["name"],
            commit_sha      = payload["pull_request"]["head"]["sha"],
            head_ref        = payload["pull_request"]["head"]["ref"],
            pr_number       = payload.get("number") or payload["pull_request"]["number"],
            installation_id = payload["installation"]["id"],
        )
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidRequest(f"pull_request payload is incomplete: {e!r}") from e


# ── Repository-Presence Gate ─────────────────────────────────────

async def has_ci_config(github, event: PullRequestEvent, config_path: str) -> bool:
    """
    True when ``config_path`` exists on the PR head. Otherwise leave the
    one-time "register with CircleCI" comment and return False.
    """
    try:
        await github.get_contents(
            event.installation_id, event.owner, event.repo_name, config_path, ref=event.head_ref,
        )
        return True
    except ConfigAbsent:
        logger.info("%s/%s has no %s on %s", event.owner, event.repo_name, config_path, event.head_ref)

    await github.create_issue_comment(
        event.installation_id, event.owner, event.repo_name, event.pr_number, NO_CONFIG_COMMENT,
    )
    return False


# ── Routes ───────────────────────────────────────────────────────

@router.post("/webhook")
async def github_webhook(
    request: Request,
    background_tasks: BackgroundTasks
):
    services = request.app.state
    payload_bytes = await request.body()

    try:
        event = normalize_event(
            request.method, request.headers, payload_bytes, services.settings.github_webhook_secret,
        )
    except InvalidRequest as e:
        logger.warning("Rejected webhook: %s", e)
        raise HTTPException(status_code=400, detail=e.message)
    except Unauthorized as e:
        logger.warning("Rejected webhook: %s", e)
        raise HTTPException(status_code=403, detail="Invalid signature")

    if isinstance(event, Ignored):
        logger.info("Ignoring webhook: %s", event.reason)
        return {"status": "ignored", "reason": event.reason}

    logger.info(
        "PR event received: %s/%s#%s action=%s sha=%s",
        event.owner, event.repo_name, event.pr_number, event.action, event.commit_sha[:7],
    )

    try:
        if not await has_ci_config(services.github, event, services.settings.config_path):
            return {"status": "no_ci_config", "pr": event.pr_number}
    except UpstreamUnavailable as e:
        logger.error("Presence check failed for %s/%s: %s", event.owner, event.repo_name, e)
        raise HTTPException(status_code=500, detail="Unable to check for CI configuration")

    background_tasks.add_task(services.scheduler.start, initial_state(event))
    return {
        "status" : "processing",
        "pr"     : event.pr_number
    }


# ── Step endpoints for an external workflow engine ───────────────

STEP_ERROR_CODES = {
    PipelineNotFound    : 404,
    UpstreamUnavailable : 502,
    ReportingFailed     : 500,
}


def _step_error(e: FeedbackError) -> HTTPException:
    status_code = STEP_ERROR_CODES.get(type(e), 500)
    return HTTPException(
        status_code = status_code,
        detail      = {
            "error"     : type(e).__name__,
            "message"   : str(e),
            "retryable" : e.retryable,
        },
    )


async def _read_state(request: Request):
    try:
        return from_wire(await request.json())
    except (ValueError, TypeError, AttributeError) as e:
        raise HTTPException(status_code=422, detail=f"invalid orchestration record: {e}")


@router.post("/steps/find-pipeline")
async def find_pipeline_step(request: Request):
    state = await _read_state(request)
    try:
        state = await correlate(state, request.app.state.circleci)
    except (PipelineNotFound, UpstreamUnavailable) as e:
        raise _step_error(e)
    return to_wire(state)


@router.post("/steps/wait-for-jobs")
async def wait_for_jobs_step(request: Request):
    state = await _read_state(request)
    if state["all_jobs_done"]:
        raise HTTPException(status_code=409, detail="all jobs are already done")
    if not state["pipeline_id"]:
        raise HTTPException(status_code=422, detail="pipeline_id must be resolved first")

    services = request.app.state
    try:
        state = await wait_for_jobs(state, services.circleci, services.github)
    except (UpstreamUnavailable, ReportingFailed) as e:
        logger.error("wait-for-jobs failed for pipeline %s: %s", state["pipeline_id"], e)
        raise _step_error(e)
    return to_wire(state)
