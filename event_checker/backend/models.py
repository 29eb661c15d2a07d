from datetime import datetime
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field

# Ids name the storage file, so they cannot contain path separators
EXPECTATION_ID_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_.-]*$"


class ExpectedEvent(BaseModel):
    kind: str = "process_exec"
    process: str
    attributes: Dict[str, Union[str, Dict[str, str]]] = Field(default_factory=dict)


class Expectation(BaseModel):
    id: str = Field(pattern=EXPECTATION_ID_PATTERN)
    name: Optional[str] = None
    namespace: Optional[str] = None
    event_limit: Optional[int] = None
    time_limit_seconds: Optional[float] = None
    expect: List[ExpectedEvent]


class ValidateRequest(BaseModel):
    expectation_yaml: str


class ValidateResponse(BaseModel):
    valid: bool
    errors: List[str]
    pattern_count: int = 0


class CheckTestRequest(BaseModel):
    expectation_yaml: str
    events_jsonl: str
    event_limit: Optional[int] = None


class StoredCheckTestRequest(BaseModel):
    events_jsonl: str
    event_limit: Optional[int] = None


class EventAction(BaseModel):
    event_id: str
    process: str
    action: str
    pattern: Optional[str] = None


class CheckTestResponse(BaseModel):
    expectation_id: str
    status: str
    passed: bool
    detail: str
    unmatched: List[str]
    events_seen: int
    events_processed: int
    actions: List[EventAction]


class CheckRunSummary(BaseModel):
    id: int
    expectation_id: str
    status: str
    detail: str
    unmatched: List[str]
    events_seen: int
    created_at: datetime
