import logging
from typing import List, Optional

from fastapi import FastAPI, HTTPException, status

from ..config import CheckerSettings, load_settings
from ..engine.compiler import CompiledExpectations, compile_expectations, compile_yaml
from ..engine.engine import EngineResult
from ..engine.errors import ConfigurationError
from ..engine.models import ObservedEvent
from ..engine.parser import parse_events
from ..engine.sources import IterableEventSource
from .history import HistoryStore, RunHistoryRepository
from .models import (
    CheckRunSummary,
    CheckTestRequest,
    CheckTestResponse,
    EventAction,
    Expectation,
    StoredCheckTestRequest,
    ValidateRequest,
    ValidateResponse,
)
from .storage import FileStorage, to_document

logger = logging.getLogger(__name__)


def create_app(settings: Optional[CheckerSettings] = None) -> FastAPI:
    settings = settings or load_settings()
    app = FastAPI(title="Unordered Event Checker")

    storage = FileStorage(str(settings.expectations_dir))
    history = HistoryStore(settings.database_url)

    def run_dry_check(
        compiled: CompiledExpectations, events_jsonl: str, event_limit: Optional[int]
    ) -> CheckTestResponse:
        try:
            events = parse_events(events_jsonl)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=f"Error parsing events: {e}")

        if not events:
            raise HTTPException(status_code=400, detail="No valid events found in events_jsonl")

        try:
            checker = compiled.build_checker(settings=settings, event_limit=event_limit)
        except ConfigurationError as e:
            raise HTTPException(status_code=400, detail=str(e))

        actions: List[EventAction] = []

        def record_action(event: ObservedEvent, result: EngineResult) -> None:
            actions.append(
                EventAction(
                    event_id=event.event_id,
                    process=event.process_name,
                    action=result.action.value,
                    pattern=result.pattern.describe() if result.pattern else None,
                )
            )

        checker.add_listener(record_action)
        verdict = checker.run(IterableEventSource(events))

        with history.session() as session:
            RunHistoryRepository(session).record(compiled.expectation_id, verdict)
            session.commit()

        return CheckTestResponse(
            expectation_id=compiled.expectation_id,
            status=verdict.status.value,
            passed=verdict.passed,
            detail=verdict.detail,
            unmatched=[pattern.describe() for pattern in verdict.unmatched],
            events_seen=verdict.events_seen,
            events_processed=len(events),
            actions=actions,
        )

    @app.get("/health")
    def health_check():
        return {"status": "ok"}

    @app.get("/expectations", response_model=List[Expectation])
    def list_expectations():
        return storage.list_expectations()

    @app.post(
        "/expectations", response_model=Expectation, status_code=status.HTTP_201_CREATED
    )
    def create_expectation(expectation: Expectation):
        try:
            return storage.create_expectation(expectation)
        except (ValueError, ConfigurationError) as e:
            raise HTTPException(status_code=400, detail=str(e))

    @app.post("/expectations/validate", response_model=ValidateResponse)
    def validate_expectation(request: ValidateRequest):
        try:
            compiled = compile_yaml(request.expectation_yaml)
        except ConfigurationError as e:
            return ValidateResponse(valid=False, errors=[str(e)])
        return ValidateResponse(valid=True, errors=[], pattern_count=len(compiled.expectations))

    @app.get("/expectations/{expectation_id}", response_model=Expectation)
    def get_expectation(expectation_id: str):
        expectation = storage.get_expectation(expectation_id)
        if not expectation:
            raise HTTPException(status_code=404, detail="Expectation not found")
        return expectation

    @app.put("/expectations/{expectation_id}", response_model=Expectation)
    def update_expectation(expectation_id: str, expectation: Expectation):
        try:
            updated = storage.update_expectation(expectation_id, expectation)
        except (ValueError, ConfigurationError) as e:
            raise HTTPException(status_code=400, detail=str(e))
        if not updated:
            raise HTTPException(status_code=404, detail="Expectation not found")
        return updated

    @app.delete("/expectations/{expectation_id}", status_code=status.HTTP_204_NO_CONTENT)
    def delete_expectation(expectation_id: str):
        if not storage.delete_expectation(expectation_id):
            raise HTTPException(status_code=404, detail="Expectation not found")
        return

    @app.post("/expectations/{expectation_id}/test", response_model=CheckTestResponse)
    def test_stored_expectation(expectation_id: str, request: StoredCheckTestRequest):
        expectation = storage.get_expectation(expectation_id)
        if not expectation:
            raise HTTPException(status_code=404, detail="Expectation not found")
        try:
            compiled = compile_expectations(to_document(expectation))
        except ConfigurationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return run_dry_check(compiled, request.events_jsonl, request.event_limit)

    @app.post("/checks/test", response_model=CheckTestResponse)
    def test_check(request: CheckTestRequest):
        """
        Dry-run an expectation set against an exported event stream.

        The events are fed to a fresh checker in file order; the stream
        ending before every expected event was seen is a failed verdict.
        """
        try:
            compiled = compile_yaml(request.expectation_yaml)
        except ConfigurationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return run_dry_check(compiled, request.events_jsonl, request.event_limit)

    @app.get("/checks/history", response_model=List[CheckRunSummary])
    def check_history(limit: int = 20, expectation_id: Optional[str] = None):
        with history.session() as session:
            records = RunHistoryRepository(session).recent(
                limit=limit, expectation_id=expectation_id
            )
            return [
                CheckRunSummary(
                    id=record.id,
                    expectation_id=record.expectation_id,
                    status=record.status,
                    detail=record.detail,
                    unmatched=record.unmatched_patterns,
                    events_seen=record.events_seen,
                    created_at=record.created_at,
                )
                for record in records
            ]

    logger.info("Expectation storage at %s", settings.expectations_dir)
    return app


app = create_app()
