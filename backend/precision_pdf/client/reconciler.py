"""Client-side reconciliation of a document's lifecycle state."""
import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx

from precision_pdf.client.api_client import ApiClientError, DocumentApiClient
from precision_pdf.models.document import Chunk, DocumentStatus
from precision_pdf.utils.logger import logger

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class DocumentSnapshot:
    """Local copy of the full record, replaced wholesale on every update."""

    document_id: str
    status: DocumentStatus
    title: str = ""
    markdown: Optional[str] = None
    chunks: Optional[Tuple[Chunk, ...]] = None
    error_message: Optional[str] = None
    page_count: Optional[int] = None
    page_image_count: int = 0
    is_placeholder: bool = False
    is_example: bool = False

    @property
    def has_extracted_content(self) -> bool:
        return self.markdown is not None or self.chunks is not None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "DocumentSnapshot":
        raw_chunks = record.get("chunks")
        chunks = None
        if isinstance(raw_chunks, list):
            chunks = tuple(
                Chunk.from_dict(raw, fallback_id=f"chunk-{index}")
                for index, raw in enumerate(raw_chunks)
                if isinstance(raw, dict)
            )

        return cls(
            document_id=str(record.get("documentId") or record.get("document_id") or ""),
            status=DocumentStatus(record.get("status")),
            title=record.get("title") or "",
            markdown=record.get("markdown"),
            chunks=chunks,
            error_message=record.get("errorMessage"),
            page_count=record.get("pageCount"),
            page_image_count=record.get("pageImageCount") or 0,
            is_placeholder=bool(record.get("isPlaceholder")),
            is_example=bool(record.get("isExample")),
        )


@dataclass(frozen=True)
class PollSchedule:
    """Escalating poll intervals with a hard cap on attempts."""

    max_attempts: int = 60
    initial_delay: float = 1.0
    fast_delay: float = 2.0
    fast_attempts: int = 10
    medium_delay: float = 3.0
    medium_attempts: int = 30
    slow_delay: float = 5.0

    def delay_for(self, attempts: int) -> float:
        """Delay before the next attempt, given how many were made so far."""
        if attempts < self.fast_attempts:
            return self.fast_delay
        if attempts < self.medium_attempts:
            return self.medium_delay
        return self.slow_delay


class PollerState(str, Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"

    @property
    def is_final(self) -> bool:
        return self in (PollerState.COMPLETED, PollerState.EXHAUSTED, PollerState.CANCELLED)


class FallbackPoller:
    """
    Bounded polling for one document.

    Each attempt probes first and only fetches the full record once content
    has arrived or the status is terminal. Cancelling is a single state
    change; the loop checks the state before every attempt.
    """

    def __init__(
        self,
        api_client: DocumentApiClient,
        document_id: str,
        on_record: Callable[[Dict[str, Any]], None],
        on_exhausted: Callable[[], None],
        schedule: Optional[PollSchedule] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.api_client = api_client
        self.document_id = document_id
        self.on_record = on_record
        self.on_exhausted = on_exhausted
        self.schedule = schedule or PollSchedule()
        self._sleep = sleep
        self.state = PollerState.IDLE
        self.attempts = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    @property
    def is_live(self) -> bool:
        return self.state == PollerState.SCHEDULED

    def start(self) -> None:
        if self.state != PollerState.IDLE:
            return
        self.state = PollerState.SCHEDULED
        self._task = asyncio.ensure_future(self._run())

    def cancel(self) -> None:
        if self.state.is_final:
            return
        self.state = PollerState.CANCELLED
        if self._task is not None and self._task is not asyncio.current_task():
            self._task.cancel()

    async def wait(self) -> None:
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    async def _run(self) -> None:
        await self._sleep(self.schedule.initial_delay)

        while self.is_live:
            self.attempts += 1
            finished = await self._attempt()
            if finished:
                # Wins even if delivering the record cancelled this poller
                self.state = PollerState.COMPLETED
                return
            if not self.is_live:
                return

            if self.attempts >= self.schedule.max_attempts:
                self.state = PollerState.EXHAUSTED
                logger.warning(
                    f"Stopped polling {self.document_id} after {self.attempts} attempts",
                    extra={"document_id": self.document_id, "attempt": self.attempts},
                )
                self.on_exhausted()
                return

            delay = self.schedule.delay_for(self.attempts)
            logger.debug(
                f"Next status check for {self.document_id} in {delay}s",
                extra={"document_id": self.document_id, "attempt": self.attempts, "delay_seconds": delay},
            )
            await self._sleep(delay)

    async def _attempt(self) -> bool:
        """Run one probe; returns True once a terminal record was delivered."""
        try:
            probe = await self.api_client.probe(self.document_id)
            if not (probe.has_extracted_content or probe.is_terminal):
                return False

            record = await self.api_client.fetch_document(self.document_id)
            status = DocumentStatus(record.get("status"))
        except (ApiClientError, httpx.HTTPError, ValueError) as e:
            logger.warning(
                f"Status check failed for {self.document_id}: {str(e)}",
                extra={"document_id": self.document_id, "attempt": self.attempts},
            )
            return False

        if not self.is_live:
            return False
        self.on_record(record)
        return status.is_terminal


class StatusReconciler:
    """
    Keeps a local snapshot of one document current.

    Push updates from the event stream are preferred; a bounded poller runs
    alongside as a fallback. The first channel to deliver a terminal record
    stops the other. Starting a new session or closing cancels everything
    belonging to the previous one.
    """

    def __init__(
        self,
        api_client: DocumentApiClient,
        schedule: Optional[PollSchedule] = None,
        sleep: Sleep = asyncio.sleep,
        on_change: Optional[Callable[[DocumentSnapshot], None]] = None,
        use_push: bool = True,
    ):
        self.api_client = api_client
        self.schedule = schedule or PollSchedule()
        self._sleep = sleep
        self.on_change = on_change
        self.use_push = use_push

        self.document_id: Optional[str] = None
        self.snapshot: Optional[DocumentSnapshot] = None
        self.transitions: List[DocumentStatus] = []
        self.timed_out = False
        self.poller: Optional[FallbackPoller] = None
        self._push_task: Optional[asyncio.Task] = None
        self._session = 0

    @property
    def is_extracting_content(self) -> bool:
        """True while a document is tracked and no terminal record has been seen."""
        if self.document_id is None:
            return False
        return self.snapshot is None or not self.snapshot.is_terminal

    def start(self, document_id: str, initial: Optional[Dict[str, Any]] = None) -> None:
        self._cancel_channels()
        self._session += 1
        session = self._session

        self.document_id = document_id
        self.snapshot = None
        self.transitions = []
        self.timed_out = False

        if initial is not None:
            self.apply_update(initial)
            if not self.is_extracting_content:
                return

        self.poller = FallbackPoller(
            self.api_client,
            document_id,
            on_record=lambda record: self._apply_for_session(session, record),
            on_exhausted=lambda: self._exhausted(session),
            schedule=self.schedule,
            sleep=self._sleep,
        )
        self.poller.start()

        if self.use_push:
            self._push_task = asyncio.ensure_future(self._consume_push(session, document_id))

    def apply_update(self, record: Dict[str, Any]) -> bool:
        """
        Replace the snapshot with a full record.

        Returns False when the record belongs to another document or is
        identical to the current snapshot.
        """
        snapshot = DocumentSnapshot.from_record(record)
        if self.document_id is None or snapshot.document_id != self.document_id:
            return False
        if snapshot == self.snapshot:
            return False

        previous = self.snapshot
        self.snapshot = snapshot
        if previous is None or previous.status != snapshot.status:
            self.transitions.append(snapshot.status)

        if self.on_change is not None:
            self.on_change(snapshot)

        if snapshot.is_terminal:
            self._cancel_channels()
        return True

    async def close(self) -> None:
        """Stop both channels; no callback of this session runs afterwards."""
        self._session += 1
        tasks = self._cancel_channels()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def wait(self) -> None:
        """Wait until both channels have stopped."""
        tasks = [t for t in (self._push_task, self.poller.task if self.poller else None) if t]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _apply_for_session(self, session: int, record: Dict[str, Any]) -> None:
        if session == self._session:
            self.apply_update(record)

    def _exhausted(self, session: int) -> None:
        if session != self._session:
            return
        self.timed_out = True
        logger.info(
            f"Document {self.document_id} is still processing; polling stopped",
            extra={"document_id": self.document_id},
        )

    async def _consume_push(self, session: int, document_id: str) -> None:
        try:
            async for record in self.api_client.subscribe(document_id):
                if session != self._session:
                    return
                try:
                    self.apply_update(record)
                except ValueError as e:
                    logger.warning(
                        f"Ignoring malformed pushed record for {document_id}: {str(e)}",
                        extra={"document_id": document_id},
                    )
                    continue
                if self.snapshot is not None and self.snapshot.is_terminal:
                    return
        except (ApiClientError, httpx.HTTPError) as e:
            # Polling carries on alone
            logger.warning(
                f"Event stream for {document_id} failed: {str(e)}",
                extra={"document_id": document_id},
            )

    def _cancel_channels(self) -> List[asyncio.Task]:
        tasks = []
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None

        if self.poller is not None:
            self.poller.cancel()
            if self.poller.task is not None:
                tasks.append(self.poller.task)

        if self._push_task is not None:
            if self._push_task is not current and not self._push_task.done():
                self._push_task.cancel()
            tasks.append(self._push_task)

        return [t for t in tasks if t is not current]
