"""
Pydantic data models for the behavior delivery engine.

Requests are immutable once validated. FormattedOutput is the tracked entity:
the engine mutates its delivery info as it moves through the
pending -> delivered / failed state machine.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class OutputType(str, Enum):
    ACTION = "action"
    RESPONSE = "response"
    SIGNAL = "signal"
    FEEDBACK = "feedback"
    ADAPTATION = "adaptation"


class DeliveryMethod(str, Enum):
    IMMEDIATE = "immediate"
    QUEUED = "queued"
    SCHEDULED = "scheduled"
    CONDITIONAL = "conditional"


class TargetType(str, Enum):
    ACTUATOR = "actuator"
    INTERFACE = "interface"
    SYSTEM = "system"
    EXTERNAL = "external"


class FormatType(str, Enum):
    COMMAND = "command"
    DATA = "data"
    SIGNAL = "signal"
    MESSAGE = "message"


class SyncMode(str, Enum):
    ASYNC = "async"
    SYNC = "sync"
    BATCH = "batch"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"
    ACKNOWLEDGED = "acknowledged"  # wire vocabulary only; never assigned by the engine


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class GroupStatus(str, Enum):
    COORDINATING = "coordinating"
    COMPLETE = "complete"


# ---------------------------
# Request
# ---------------------------


class Target(BaseModel):
    """Where an output goes."""

    model_config = ConfigDict(frozen=True)

    type: TargetType
    identifier: str
    protocol: str
    parameters: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("identifier", "protocol")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()


class FormatSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Optional[FormatType] = None
    encoding: str = "json"
    compression: bool = False
    validation: bool = False


class RepeatSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    count: int = Field(ge=0)
    interval: float = Field(ge=0)


class TimingSpec(BaseModel):
    """Timing constraints; ``delay`` and ``duration`` are milliseconds."""

    model_config = ConfigDict(frozen=True)

    immediate: bool = False
    delay: Optional[float] = Field(default=None, ge=0)
    duration: Optional[float] = Field(default=None, gt=0)
    repeat: Optional[RepeatSpec] = None


class CoordinationSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    sequence: int = 0
    dependencies: List[str] = Field(default_factory=list)
    synchronization: SyncMode = SyncMode.ASYNC


class OutputRequest(BaseModel):
    """Caller-supplied behavioral output request."""

    model_config = ConfigDict(frozen=True)

    behavior_data: Dict[str, Any] = Field(default_factory=dict)
    output_type: OutputType
    delivery_method: DeliveryMethod = DeliveryMethod.QUEUED
    target: Target
    format: FormatSpec = Field(default_factory=FormatSpec)
    timing: TimingSpec = Field(default_factory=TimingSpec)
    coordination: CoordinationSpec = Field(default_factory=CoordinationSpec)


# ---------------------------
# Formatted output
# ---------------------------


class Command(BaseModel):
    type: str
    data: Any = None
    timing: float = 0
    validation: str


class Monitoring(BaseModel):
    checkpoints: List[str] = Field(default_factory=lambda: ["start", "execution", "completion"])
    feedback: List[Any] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class Execution(BaseModel):
    commands: List[Command]
    monitoring: Monitoring = Field(default_factory=Monitoring)
    coordination: CoordinationSpec


class DeliveryInfo(BaseModel):
    method: DeliveryMethod
    target: str
    protocol: str
    timestamp: datetime
    status: DeliveryStatus = DeliveryStatus.PENDING
    retry_count: int = 0
    delivered_at: Optional[datetime] = None
    last_error: Optional[str] = None
    next_attempt_at: Optional[datetime] = None


class OutputMetadata(BaseModel):
    processing_time: float = 0.0
    size: int = 0
    priority: Priority
    template_id: Optional[str] = None
    validation: List[str] = Field(default_factory=list)


class FormattedOutput(BaseModel):
    """The queued/tracked unit of work."""

    id: str
    request: OutputRequest
    formatted_data: Any = None
    delivery_info: DeliveryInfo
    execution: Execution
    metadata: OutputMetadata

    @property
    def status(self) -> DeliveryStatus:
        return self.delivery_info.status

    @property
    def dependencies(self) -> List[str]:
        return self.execution.coordination.dependencies

    @property
    def is_terminal(self) -> bool:
        return self.delivery_info.status in (DeliveryStatus.DELIVERED, DeliveryStatus.FAILED)

    def _require_pending(self) -> None:
        if self.delivery_info.status is not DeliveryStatus.PENDING:
            raise ValueError(
                f"output {self.id} is {self.delivery_info.status.value}, expected pending"
            )

    def mark_delivered(self, at: datetime) -> None:
        self._require_pending()
        self.delivery_info.status = DeliveryStatus.DELIVERED
        self.delivery_info.delivered_at = at
        self.delivery_info.next_attempt_at = None

    def record_failure(self, reason: str) -> int:
        """Count one failed attempt; returns the new retry count."""
        self._require_pending()
        self.delivery_info.retry_count += 1
        self.delivery_info.last_error = reason
        self.execution.monitoring.errors.append(reason)
        return self.delivery_info.retry_count

    def mark_failed(self, reason: str) -> None:
        self._require_pending()
        self.delivery_info.status = DeliveryStatus.FAILED
        self.delivery_info.last_error = reason
        self.delivery_info.next_attempt_at = None


# ---------------------------
# Templates & coordination
# ---------------------------


class Template(BaseModel):
    id: str
    name: str
    type: OutputType
    description: str = ""
    structure: Dict[str, Any] = Field(default_factory=dict)
    parameters: Dict[str, Any] = Field(default_factory=dict)
    validation: List[str] = Field(default_factory=list)


class CoordinationGroup(BaseModel):
    id: str
    outputs: List[str]
    dependencies: Dict[str, List[str]] = Field(default_factory=dict)
    synchronization: SyncMode = SyncMode.ASYNC
    status: GroupStatus = GroupStatus.COORDINATING
    created_at: datetime
    completed_at: Optional[datetime] = None


# ---------------------------
# Engine responses
# ---------------------------


class DeliveryCounts(BaseModel):
    total_outputs: int
    successful: int
    pending: int
    failed: int


class CoordinationSummary(BaseModel):
    sequence_complete: bool
    dependencies_resolved: bool
    synchronization_status: SyncMode


class SubmissionResult(BaseModel):
    output_id: str
    status: DeliveryStatus
    output: FormattedOutput
    delivery: DeliveryCounts
    coordination: CoordinationSummary
    processing_time: float


class StatusReport(BaseModel):
    outputs: List[FormattedOutput]
    queue_size: int
    processing_time: float


class TemplateCatalog(BaseModel):
    templates: List[Template]
    total_available: int
    categories: List[OutputType]


class CoordinationResult(BaseModel):
    group_id: str
    outputs_processed: int
    synchronization: SyncMode
    status: GroupStatus
    success: bool = True


class CancelResult(BaseModel):
    output_id: str
    cancelled: bool
