"""Webhook event dispatch.

EventDispatcher sequences one delivery through signature verification,
routing, installation authentication and the event handler:

    RECEIVED -> SIGNATURE_CHECKED -> ROUTED -> {HANDLED, REJECTED, IGNORED}

Only a signature failure is visible to the sender (401). Once the signature
passes, the response is a fixed 200 "ok" whatever the handler does; handler
failures are logged and counted. With ``background=True`` the handler runs as
an asyncio task and the response is produced as soon as routing is done.

Every token, client, manifest and staging root lives inside one dispatch.
Nothing is cached on the dispatcher between deliveries.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Set

import structlog

from tfbridge.auth.app import AppAuthenticator, DispatchContext
from tfbridge.errors import PayloadError
from tfbridge.harvest.staging import StagingArea
from tfbridge.harvest.walker import RepoTreeWalker
from tfbridge.metrics import BridgeMetrics
from tfbridge.upload.orchestrator import UploadOrchestrator
from tfbridge.webhook.handler import (
    decode_payload,
    extract_installation_id,
    parse_issue_event,
    parse_push_event,
)
from tfbridge.webhook.models import EventType, IssueEvent, PushEvent, WebhookEvent
from tfbridge.webhook.signature import SignatureVerifier

logger = structlog.get_logger(__name__)

ACK_BODY = "ok"
UNAUTHORIZED_BODY = "unauthorized"
BAD_REQUEST_BODY = "bad request"


class DispatchState(str, Enum):
    """States of one delivery.

    Attributes:
        RECEIVED: Delivery accepted from the transport.
        SIGNATURE_CHECKED: Signature verified against the shared secret.
        ROUTED: Event type inspected and the handler selected.
        HANDLED: A handler ran (its failures are logged, not returned).
        REJECTED: Signature check failed, or strict decoding rejected the body.
        IGNORED: Event type is not one the bridge acts on.
    """

    RECEIVED = "received"
    SIGNATURE_CHECKED = "signature_checked"
    ROUTED = "routed"
    HANDLED = "handled"
    REJECTED = "rejected"
    IGNORED = "ignored"


@dataclass
class DispatchResult:
    """What the transport should answer for one delivery.

    Attributes:
        state: Terminal state reached by the dispatch.
        status_code: HTTP status for the response.
        body: Response body.
        error: Handler error message, if a handler failed. Never sent to
            the webhook sender.
        background: The handler was scheduled as a task and is still
            running when the result is returned.
    """

    state: DispatchState
    status_code: int = 200
    body: str = ACK_BODY
    error: Optional[str] = None
    background: bool = False


class EventDispatcher:
    """Routes verified webhook deliveries to the issue and push handlers.

    Attributes:
        verifier: Checks delivery signatures.
        authenticator: Opens a per-dispatch installation context.
        walker: Harvests repository files for push events.
        staging: Creates staging roots for harvests.
        uploader: Forwards harvests downstream.
        issue_label: Label attached to newly opened issues.
        strict_payloads: Reject undecodable bodies with 400.
        background: Run handlers as asyncio tasks after acknowledging.
    """

    def __init__(
        self,
        verifier: SignatureVerifier,
        authenticator: AppAuthenticator,
        walker: RepoTreeWalker,
        staging: StagingArea,
        uploader: UploadOrchestrator,
        issue_label: str = "needs-response",
        metrics: Optional[BridgeMetrics] = None,
        strict_payloads: bool = False,
        background: bool = False,
    ):
        self.verifier = verifier
        self.authenticator = authenticator
        self.walker = walker
        self.staging = staging
        self.uploader = uploader
        self.issue_label = issue_label
        self.metrics = metrics
        self.strict_payloads = strict_payloads
        self.background = background
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def dispatch(self, event: WebhookEvent) -> DispatchResult:
        """Process one webhook delivery.

        Args:
            event: The raw delivery.

        Returns:
            DispatchResult with the terminal state and the HTTP answer.
        """
        started = time.monotonic()
        log = logger.bind(delivery_id=event.delivery_id, event=event.event_type)

        result = await self._dispatch(event, log, started)

        if self.metrics is not None:
            self.metrics.record_delivery(event.event_type, result.state.value)
            # Background handlers observe their duration when the task finishes
            if not result.background:
                self.metrics.observe_dispatch(event.event_type, time.monotonic() - started)

        log.info(
            "webhook_dispatched",
            state=result.state.value,
            status_code=result.status_code,
            background=result.background,
            duration_seconds=round(time.monotonic() - started, 3),
        )
        return result

    async def _dispatch(self, event: WebhookEvent, log: Any, started: float) -> DispatchResult:
        state = DispatchState.RECEIVED
        log.debug("webhook_state", state=state.value)

        if not self.verifier.verify(event.body, event.signature_header):
            log.warning("webhook_signature_rejected")
            return DispatchResult(
                state=DispatchState.REJECTED,
                status_code=401,
                body=UNAUTHORIZED_BODY,
            )
        state = DispatchState.SIGNATURE_CHECKED
        log.debug("webhook_state", state=state.value)

        try:
            payload = decode_payload(event.body, strict=self.strict_payloads)
        except PayloadError as exc:
            log.warning("webhook_payload_rejected", error=str(exc))
            return DispatchResult(
                state=DispatchState.REJECTED,
                status_code=400,
                body=BAD_REQUEST_BODY,
                error=str(exc),
            )

        event_type = EventType.parse(event.event_type)
        if event_type is None:
            log.info("webhook_event_ignored")
            return DispatchResult(state=DispatchState.IGNORED)
        state = DispatchState.ROUTED
        log.debug("webhook_state", state=state.value)

        if self.background:
            task = asyncio.create_task(self._run_background(event_type, payload, log, started))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            return DispatchResult(state=DispatchState.HANDLED, background=True)

        error = await self._run_handler(event_type, payload, log)
        return DispatchResult(state=DispatchState.HANDLED, error=error)

    async def _run_handler(
        self,
        event_type: EventType,
        payload: Dict[str, Any],
        log: Any,
    ) -> Optional[str]:
        """Run the handler for a routed event.

        Returns:
            The error message if the handler failed, None otherwise.
        """
        try:
            if event_type is EventType.ISSUES:
                await self.handle_issue(payload, log)
            else:
                await self.handle_push(payload, log)
        except Exception as exc:
            log.exception(
                "webhook_handler_failed",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            if self.metrics is not None:
                self.metrics.record_handler_error(event_type.value, type(exc).__name__)
            return str(exc)
        return None

    async def _run_background(
        self,
        event_type: EventType,
        payload: Dict[str, Any],
        log: Any,
        started: float,
    ) -> None:
        try:
            error = await self._run_handler(event_type, payload, log)
        finally:
            duration = time.monotonic() - started
            if self.metrics is not None:
                self.metrics.observe_dispatch(event_type.value, duration)
        log.info(
            "background_handler_finished",
            failed=error is not None,
            duration_seconds=round(duration, 3),
        )

    async def _open_context(self, payload: Dict[str, Any]) -> DispatchContext:
        installation_id = extract_installation_id(payload)
        if installation_id is None:
            raise PayloadError("Payload has no installation id")
        return await self.authenticator.open_context(installation_id)

    async def handle_issue(self, payload: Dict[str, Any], log: Any = logger) -> None:
        """Label a newly opened issue.

        Actions other than "opened" do nothing beyond authentication.
        """
        issue: Optional[IssueEvent] = parse_issue_event(payload)
        if issue is None:
            log.info("issue_event_skipped", reason="incomplete_payload")
            return

        async with await self._open_context(payload) as ctx:
            if not issue.is_opened:
                log.debug("issue_event_noop", action=issue.action)
                return

            await ctx.client.add_labels(issue.repository, issue.issue_number, [self.issue_label])
            log.info(
                "issue_labeled",
                repo=issue.repository,
                issue_number=issue.issue_number,
                installation_id=ctx.installation_id,
                label=self.issue_label,
            )

    async def handle_push(self, payload: Dict[str, Any], log: Any = logger) -> None:
        """Harvest the pushed commit and forward it downstream.

        Raises:
            PayloadError: If the push payload lacks required fields.
            AuthenticationError: If the installation cannot be authenticated.
            ProviderAPIError: If a listing or fetch fails.
            StagingIOError: If files cannot be staged.
            UploadError: If the ingestion service rejects the harvest.
        """
        push: PushEvent = parse_push_event(payload)
        log = log.bind(repo=push.repository, commit_id=push.commit_id, branch=push.branch)

        async with await self._open_context(payload) as ctx:
            if push.deleted:
                log.info("push_event_skipped", reason="ref_deleted")
                return

            with self.staging.create(push.commit_id) as root:
                manifest = await self.walker.harvest(
                    ctx.client,
                    push.repository,
                    root,
                    push.commit_metadata(),
                    ref=push.commit_id,
                )
                if self.metrics is not None:
                    self.metrics.record_harvest(len(manifest), manifest.total_bytes)

                if len(manifest) == 0:
                    log.info("harvest_empty", reason="no_matching_files")

                try:
                    result = await self.uploader.upload(manifest, root)
                except Exception:
                    if self.metrics is not None:
                        self.metrics.record_upload("failed")
                    raise

                if self.metrics is not None:
                    self.metrics.record_upload("accepted")
                log.info(
                    "push_harvest_forwarded",
                    installation_id=ctx.installation_id,
                    file_count=result.file_count,
                    status_code=result.status_code,
                )

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for background handlers to finish.

        Args:
            timeout: Seconds to wait before cancelling what is left.
        """
        if not self._tasks:
            return

        pending = set(self._tasks)
        logger.info("draining_background_handlers", count=len(pending))
        _, still_pending = await asyncio.wait(pending, timeout=timeout)

        for task in still_pending:
            task.cancel()
        if still_pending:
            await asyncio.gather(*still_pending, return_exceptions=True)
            logger.warning("background_handlers_cancelled", count=len(still_pending))
