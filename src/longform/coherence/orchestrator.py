"""Coherence orchestration for long-form generation.

A session moves through five phases: skeleton, chunk (repeated), stitch, an
optional supplement, and finalize. Every phase reads what it needs from the
session store and writes its result back before the next phase starts, so an
interrupted session can be resumed from whatever was last persisted.

Two drivers share the phases and the routing functions. :meth:`stream` is a
plain generator that yields progress events and suits SSE responses;
:meth:`run` executes the same phases through a compiled LangGraph workflow and
hands events to a callback.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import closing
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Generator, Iterator

from langgraph.graph import END, START, StateGraph

from ..config import CoherenceConfig
from ..graph.states import CoherenceWorkflowState
from ..llm.providers import ProviderError, TextGenerator
from .chunking import ChunkGenerator, count_words, plan_chunk_count, plan_chunk_targets
from .content import ContentBundle, ContentRetriever, RetrievalError
from .delta import extract_delta
from .events import EventKind, ProgressEvent
from .schema import ChunkRecord, ChunkStatus, Session, SessionKind, SessionStatus, StitchReport
from .skeleton import SkeletonExtractor
from .store import SessionStateError, SessionStore, SessionStoreError

__all__ = [
    "CoherenceOrchestrator",
    "CoherenceRequest",
]

logger = logging.getLogger(__name__)

PhaseRun = Generator[ProgressEvent, None, Dict[str, Any]]
EventHandler = Callable[[ProgressEvent], None]

TERMINAL_ERRORS = (ProviderError, SessionStoreError, SessionStateError, RetrievalError)


@dataclass(slots=True)
class CoherenceRequest:
    """Everything needed to open a new coherence session."""

    kind: SessionKind | str
    subject_id: str
    subject_label: str
    user_prompt: str
    target_words: int
    topic: str | None = None
    content: ContentBundle | None = None
    enhanced: bool | None = None
    session_id: str | None = None

    def __post_init__(self) -> None:
        self.kind = SessionKind(self.kind)
        if not self.subject_id.strip():
            raise ValueError("subject_id must not be empty")
        if not self.subject_label.strip():
            raise ValueError("subject_label must not be empty")
        if not self.user_prompt.strip():
            raise ValueError("user_prompt must not be empty")
        if self.target_words <= 0:
            raise ValueError("target_words must be positive")


class CoherenceOrchestrator:
    """Drive coherence sessions from request to stitched report."""

    def __init__(
        self,
        generator: TextGenerator,
        store: SessionStore,
        *,
        config: CoherenceConfig | None = None,
        retriever: ContentRetriever | None = None,
        extractor: SkeletonExtractor | None = None,
        chunk_generator: ChunkGenerator | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.generator = generator
        self.store = store
        self.config = config or CoherenceConfig()
        self.retriever = retriever
        self.extractor = extractor or SkeletonExtractor(generator, self.config)
        self.chunk_generator = chunk_generator or ChunkGenerator(generator, self.config)
        self._sleep = sleep
        self._phases: Dict[str, Callable[[CoherenceWorkflowState], PhaseRun]] = {
            "skeleton": self._skeleton_phase,
            "chunk": self._chunk_phase,
            "stitch": self._stitch_phase,
            "supplement": self._supplement_phase,
            "finalize": self._finalize_phase,
        }
        self._routes: Dict[str, Callable[[CoherenceWorkflowState], str]] = {
            "skeleton": self._route_after_skeleton,
            "chunk": self._route_after_chunk,
            "stitch": self._route_after_stitch,
            "supplement": self._route_after_supplement,
            "finalize": lambda state: END,
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def start(self, request: CoherenceRequest) -> Session:
        """Persist a new pending session for ``request``."""

        session = Session(
            id=request.session_id or uuid.uuid4().hex,
            kind=request.kind,
            subject_id=request.subject_id,
            subject_label=request.subject_label,
            user_prompt=request.user_prompt,
            topic=request.topic,
            model=getattr(self.generator, "model", None),
            enhanced=self.config.enhanced if request.enhanced is None else request.enhanced,
            target_words=request.target_words,
        )
        created = self.store.create(session)
        logger.info(
            "Created %s session %s for %s (%d words)",
            created.kind.value,
            created.id,
            created.subject_label,
            created.target_words,
        )
        return created

    def generate(self, request: CoherenceRequest) -> Iterator[ProgressEvent]:
        """Open a session and return its event stream."""

        session = self.start(request)
        return self.stream(session.id, content=request.content)

    def resume(self, session_id: str, **kwargs: Any) -> Iterator[ProgressEvent]:
        return self.stream(session_id, **kwargs)

    def stream(
        self,
        session_id: str,
        *,
        content: ContentBundle | None = None,
        retry_failed: bool = False,
    ) -> Iterator[ProgressEvent]:
        """Yield progress events until the session completes or fails.

        Closing the iterator stops the session after the chunk in flight is
        abandoned; everything already persisted stays resumable.
        """

        session = self.store.load(session_id)
        if session.status is SessionStatus.COMPLETE:
            if session.report is not None:
                yield self._report_event(session.report)
            yield ProgressEvent.done(session_id)
            return
        if session.status is SessionStatus.FAILED and not retry_failed:
            yield ProgressEvent(
                kind=EventKind.FAILURE,
                session_id=session_id,
                text=f"Session failed: {session.error_message or 'unknown error'}",
                data={"error": session.error_message, "phase": None},
            )
            yield ProgressEvent.done(session_id)
            return

        state = self._initial_state(session, content)
        node = self._route_entry(state)
        while node != END:
            update = yield from self._guarded(node, state)
            state = {**state, **update}  # type: ignore[assignment]
            node = self._routes[node](state)
        yield ProgressEvent.done(session_id)

    def run(
        self,
        session_id: str,
        *,
        content: ContentBundle | None = None,
        on_event: EventHandler | None = None,
        retry_failed: bool = False,
    ) -> Session:
        """Execute the session through the LangGraph workflow."""

        emit = on_event or self._log_event
        session = self.store.load(session_id)
        if session.is_terminal and not (session.status is SessionStatus.FAILED and retry_failed):
            for event in self.stream(session_id, retry_failed=retry_failed):
                emit(event)
            return self.store.load(session_id)

        workflow = self._build_workflow(emit)
        planned = session.total_chunks or plan_chunk_count(session.target_words, self.config.words_per_chunk)
        workflow.invoke(
            self._initial_state(session, content),
            config={
                "recursion_limit": planned + 10,
                "configurable": {"thread_id": f"coherence-{session_id}"},
            },
        )
        emit(ProgressEvent.done(session_id))
        return self.store.load(session_id)

    # ------------------------------------------------------------------
    # Workflow wiring
    # ------------------------------------------------------------------
    def _build_workflow(self, emit: EventHandler):
        graph = StateGraph(CoherenceWorkflowState)
        for name in self._phases:
            graph.add_node(name, self._graph_node(name, emit))

        graph.add_conditional_edges(START, self._route_entry, ["skeleton", "chunk", "stitch"])
        graph.add_conditional_edges("skeleton", self._route_after_skeleton, ["chunk", END])
        graph.add_conditional_edges("chunk", self._route_after_chunk, ["chunk", "stitch", END])
        graph.add_conditional_edges("stitch", self._route_after_stitch, ["supplement", "finalize", END])
        graph.add_conditional_edges("supplement", self._route_after_supplement, ["finalize", END])
        graph.add_edge("finalize", END)
        return graph.compile()

    def _graph_node(self, name: str, emit: EventHandler) -> Callable[[CoherenceWorkflowState], Dict[str, Any]]:
        def node(state: CoherenceWorkflowState) -> Dict[str, Any]:
            run = self._guarded(name, state)
            while True:
                try:
                    event = next(run)
                except StopIteration as stop:
                    return stop.value or {}
                emit(event)

        node.__name__ = f"{name}_node"
        return node

    def _initial_state(self, session: Session, content: ContentBundle | None) -> CoherenceWorkflowState:
        state: CoherenceWorkflowState = {
            "session_id": session.id,
            "total_chunks": session.total_chunks,
            "next_index": len(session.nominal_chunks()),
            "needs_supplement": False,
            "failed": False,
        }
        if content is not None:
            state["content"] = content
        return state

    def _route_entry(self, state: CoherenceWorkflowState) -> str:
        session = self.store.load(state["session_id"])
        if session.skeleton is None:
            return "skeleton"
        if len(session.nominal_chunks()) < session.total_chunks:
            return "chunk"
        return "stitch"

    def _route_after_skeleton(self, state: CoherenceWorkflowState) -> str:
        return END if state.get("failed") else "chunk"

    def _route_after_chunk(self, state: CoherenceWorkflowState) -> str:
        if state.get("failed"):
            return END
        if state.get("next_index", 0) < state.get("total_chunks", 0):
            return "chunk"
        return "stitch"

    def _route_after_stitch(self, state: CoherenceWorkflowState) -> str:
        if state.get("failed"):
            return END
        return "supplement" if state.get("needs_supplement") else "finalize"

    def _route_after_supplement(self, state: CoherenceWorkflowState) -> str:
        return END if state.get("failed") else "finalize"

    def _guarded(self, name: str, state: CoherenceWorkflowState) -> PhaseRun:
        session_id = state["session_id"]
        try:
            return (yield from self._phases[name](state))
        except TERMINAL_ERRORS as exc:
            logger.warning("Session %s failed during %s phase: %s", session_id, name, exc)
            yield self._mark_failed(session_id, name, exc)
            return {"failed": True}

    def _mark_failed(self, session_id: str, phase: str, exc: Exception) -> ProgressEvent:
        message = str(exc) or exc.__class__.__name__
        try:
            self.store.update(session_id, status=SessionStatus.FAILED, error_message=message)
        except (SessionStoreError, SessionStateError) as store_exc:
            logger.error("Could not record failure for session %s: %s", session_id, store_exc)
        return ProgressEvent(
            kind=EventKind.FAILURE,
            session_id=session_id,
            text=f"Session failed during {phase}: {message}",
            data={"error": message, "phase": phase},
        )

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------
    def _skeleton_phase(self, state: CoherenceWorkflowState) -> PhaseRun:
        session = self.store.load(state["session_id"])
        targets = plan_chunk_targets(session.target_words, self.config.words_per_chunk)
        yield ProgressEvent(
            kind=EventKind.SESSION_STARTED,
            session_id=session.id,
            text=f"Target: {session.target_words} words in {len(targets)} chunks",
            data={"target_words": session.target_words, "total_chunks": len(targets)},
        )

        content = self._resolve_content(session, state.get("content"))
        skeleton = self.extractor.extract(session.user_prompt, session.subject_label, content)
        session = self.store.update(
            session.id,
            skeleton=skeleton,
            total_chunks=len(targets),
            chunk_targets=targets,
            status=SessionStatus.SKELETON,
            error_message=None,
        )
        logger.info("Session %s skeleton ready (%d chunks planned)", session.id, len(targets))
        yield ProgressEvent(
            kind=EventKind.SKELETON,
            session_id=session.id,
            text=skeleton.summary_text(),
            data={"skeleton": skeleton.model_dump(mode="json")},
        )
        return {"total_chunks": len(targets), "next_index": 0}

    def _chunk_phase(self, state: CoherenceWorkflowState) -> PhaseRun:
        session = self.store.load(state["session_id"])
        if session.status is not SessionStatus.CHUNKING:
            session = self.store.update(session.id, status=SessionStatus.CHUNKING, error_message=None)
        index = len(session.chunks)
        session = yield from self._produce_chunk(
            session,
            index=index,
            total=session.total_chunks,
            target=session.chunk_targets[index],
            supplemental=False,
        )
        if index + 1 < session.total_chunks:
            yield from self._pause(session.id)
        return {"next_index": index + 1}

    def _stitch_phase(self, state: CoherenceWorkflowState) -> PhaseRun:
        session = self.store.load(state["session_id"])
        if session.status is not SessionStatus.STITCHING:
            session = self.store.update(session.id, status=SessionStatus.STITCHING, error_message=None)
        threshold = self.config.shortfall_ratio * session.target_words
        needs_supplement = (
            session.actual_words < threshold
            and not session.has_supplemental_chunk()
            and len(session.chunks) == session.total_chunks
        )
        logger.info(
            "Session %s stitched %d/%d words%s",
            session.id,
            session.actual_words,
            session.target_words,
            " (shortfall)" if needs_supplement else "",
        )
        if needs_supplement:
            shortfall = session.target_words - session.actual_words
            yield ProgressEvent(
                kind=EventKind.SHORTFALL,
                session_id=session.id,
                text=f"Shortfall: {shortfall} words. Generating additional content.",
                data={
                    "actual_words": session.actual_words,
                    "target_words": session.target_words,
                    "shortfall": shortfall,
                },
            )
        return {"needs_supplement": needs_supplement}

    def _supplement_phase(self, state: CoherenceWorkflowState) -> PhaseRun:
        session = self.store.load(state["session_id"])
        yield from self._pause(session.id)
        yield from self._produce_chunk(
            session,
            index=session.total_chunks,
            total=session.total_chunks + 1,
            target=session.target_words - session.actual_words,
            supplemental=True,
        )
        return {"needs_supplement": False}

    def _finalize_phase(self, state: CoherenceWorkflowState) -> PhaseRun:
        session = self.store.load(state["session_id"])
        report = StitchReport.from_chunks(session.id, session.target_words, session.chunks)
        self.store.save_report(session.id, report)
        self.store.update(session.id, status=SessionStatus.COMPLETE)
        logger.info(
            "Session %s complete: %d words, %d conflict(s), score %s",
            session.id,
            report.total_words,
            len(report.conflicts),
            report.coherence_score.value,
        )
        yield self._report_event(report)
        return {"report": report.model_dump(mode="json")}

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _produce_chunk(
        self,
        session: Session,
        *,
        index: int,
        total: int,
        target: int,
        supplemental: bool,
    ) -> Generator[ProgressEvent, None, Session]:
        skeleton = session.skeleton
        if skeleton is None:
            raise SessionStoreError(f"Session {session.id} has no persisted skeleton")
        record = ChunkRecord(index=index, target_words=target, supplemental=supplemental)
        yield ProgressEvent(
            kind=EventKind.CHUNK_START,
            session_id=session.id,
            text=f"--- CHUNK {index + 1}/{total} (Target: {target} words) ---",
            data={
                "index": index,
                "total": total,
                "target_words": target,
                "section": skeleton.section_for(index),
                "supplemental": supplemental,
            },
        )

        pieces: list[str] = []
        fragments = self.chunk_generator.generate(
            skeleton,
            index,
            total,
            target,
            session.subject_label,
            session.deltas(),
            enhanced=session.enhanced,
        )
        with closing(iter(fragments)) as stream:
            for fragment in stream:
                if not fragment:
                    continue
                pieces.append(fragment)
                yield ProgressEvent(kind=EventKind.FRAGMENT, session_id=session.id, text=fragment)

        text = "".join(pieces)
        delta = extract_delta(
            text,
            skeleton,
            claim_limit=self.config.claim_limit,
            claim_chars=self.config.claim_chars,
            probe_chars=self.config.conflict_probe_chars,
        )
        record = record.model_copy(
            update={
                "text": text,
                "word_count": count_words(text),
                "delta": delta,
                "status": ChunkStatus.COMPLETE,
                "completed_at": datetime.now(timezone.utc),
            }
        )
        session = self.store.append_chunk(session.id, record)
        logger.debug(
            "Session %s chunk %d saved: %d words, running total %d",
            session.id,
            index,
            record.word_count,
            session.actual_words,
        )
        yield ProgressEvent(
            kind=EventKind.CHUNK_COMPLETE,
            session_id=session.id,
            text=(
                f"[Chunk {index + 1} saved: {record.word_count} words | "
                f"Running total: {session.actual_words}/{session.target_words}]"
            ),
            data={
                "index": index,
                "word_count": record.word_count,
                "running_total": session.actual_words,
                "target_words": session.target_words,
                "supplemental": supplemental,
            },
        )
        if delta.conflicts_detected:
            for conflict in delta.conflicts_detected:
                logger.warning("Session %s chunk %d: %s", session.id, index, conflict)
            yield ProgressEvent(
                kind=EventKind.CONFLICT_WARNING,
                session_id=session.id,
                text=f"[WARNING: {len(delta.conflicts_detected)} potential conflicts detected]",
                data={"index": index, "conflicts": list(delta.conflicts_detected)},
            )
        return session

    def _pause(self, session_id: str) -> Iterator[ProgressEvent]:
        delay = self.config.chunk_delay_seconds
        yield ProgressEvent(
            kind=EventKind.PAUSE,
            session_id=session_id,
            text=f"[Pausing {delay:g} seconds for rate limit...]",
            data={"seconds": delay},
        )
        self._sleep(delay)

    def _resolve_content(self, session: Session, content: ContentBundle | None) -> ContentBundle:
        if content is not None:
            return content
        if self.retriever is None:
            return ContentBundle.empty()
        query = session.topic or session.user_prompt
        bundle = self.retriever.fetch_content(session.subject_id, query, self.config.content_limit)
        logger.debug("Retrieved %d source item(s) for session %s", bundle.total(), session.id)
        return bundle

    def _report_event(self, report: StitchReport) -> ProgressEvent:
        verdict = "PASS" if not report.conflicts else "NEEDS_REPAIR"
        return ProgressEvent(
            kind=EventKind.REPORT,
            session_id=report.session_id,
            text=(
                f"Final word count: {report.total_words} (target {report.target_words}) | "
                f"Conflicts: {len(report.conflicts)} | Status: {verdict}"
            ),
            data=report.model_dump(mode="json"),
        )

    @staticmethod
    def _log_event(event: ProgressEvent) -> None:
        if event.kind is not EventKind.FRAGMENT:
            logger.debug("[%s] %s", event.kind.value, event.text.strip())
