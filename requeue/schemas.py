from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

if __package__:
    from .config import DEFAULT_BATCH_SIZE, DEFAULT_DESTINATION
    from .runtime_utils import split_csv
else:  # pragma: no cover - fallback for direct script execution
    from config import DEFAULT_BATCH_SIZE, DEFAULT_DESTINATION
    from runtime_utils import split_csv


RunTrigger = Literal["cli", "scheduled", "api"]
RunStatus = Literal["invalid_scope", "exhausted", "deadline"]

STATUS_INVALID_SCOPE: RunStatus = "invalid_scope"
STATUS_EXHAUSTED: RunStatus = "exhausted"
STATUS_DEADLINE: RunStatus = "deadline"


class ScopeFilter(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    error_types: List[int] = Field(default_factory=list)
    event_names: List[str] = Field(default_factory=list)
    date_from: Optional[int] = Field(default=None, ge=0)
    date_to: Optional[int] = Field(default=None, ge=0)

    @field_validator("error_types", "event_names", mode="before")
    @classmethod
    def split_comma_separated(cls, value):
        # "401, 403" and ["401", "403"] are both accepted.
        return split_csv(value)

    def is_empty(self) -> bool:
        return (
            not self.error_types
            and not self.event_names
            and self.date_from is None
            and self.date_to is None
        )


class RunConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    scope: ScopeFilter = Field(default_factory=ScopeFilter)
    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, gt=0)
    max_runtime_sec: int = Field(default=0, ge=0)
    dry_run: bool = True
    destination: str = Field(default=DEFAULT_DESTINATION, min_length=1, max_length=64)
    trigger: RunTrigger = "cli"


class RequeueRunRequest(ScopeFilter):
    model_config = ConfigDict(extra="forbid", frozen=False)

    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, gt=0)
    max_runtime_sec: int = Field(default=0, ge=0)
    dry_run: bool = True
    destination: str = Field(default=DEFAULT_DESTINATION, min_length=1, max_length=64)

    def to_run_config(self) -> RunConfig:
        return RunConfig(
            scope=ScopeFilter(
                error_types=self.error_types,
                event_names=self.event_names,
                date_from=self.date_from,
                date_to=self.date_to,
            ),
            batch_size=self.batch_size,
            max_runtime_sec=self.max_runtime_sec,
            dry_run=self.dry_run,
            destination=self.destination,
            trigger="api",
        )


class RunReport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    run_id: str
    trigger: RunTrigger
    status: RunStatus
    dry_run: bool
    total_matched: int = 0
    total_succeeded: int = 0
    total_failed: int = 0
    batches: int = 0
    final_offset: int = 0
    elapsed_sec: float = 0.0
    scope_notes: List[str] = Field(default_factory=list)
    error: Optional[str] = None
