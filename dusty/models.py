"""
Pydantic data models for the dusty notification daemon.

Defines notifications, policy rules, daemon configuration and the
events published by the lifecycle manager.
"""

import re
from dataclasses import dataclass
from datetime import datetime, time as dt_time
from enum import Enum, IntEnum
from pathlib import Path
from typing import Annotated, Any, Dict, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .constants import MAX_NOTIFICATION_ID, STACK_TAG_HINTS


# Enumerations

class Urgency(IntEnum):
    """Notification urgency as carried by the ``urgency`` byte hint."""
    LOW = 0
    NORMAL = 1
    CRITICAL = 2

    @classmethod
    def parse(cls, value: Any) -> "Urgency":
        """Accept an Urgency, its wire byte, or its name ("low", "normal", "critical")."""
        if isinstance(value, Urgency):
            return value
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise ValueError(f"Unknown urgency: {value!r}")
        if isinstance(value, int) and not isinstance(value, bool):
            return cls(value)
        raise ValueError(f"Invalid urgency value: {value!r}")


class CloseReason(str, Enum):
    """Why a notification left the live table."""
    EXPIRED = "expired"
    DISMISSED = "dismissed"      # by the user
    CLOSED = "closed"            # by a CloseNotification call
    REPLACED = "replaced"
    SUPPRESSED = "suppressed"
    UNDEFINED = "undefined"

    @property
    def wire_code(self) -> int:
        """Reason code sent in the NotificationClosed signal."""
        return _WIRE_CODES[self]


_WIRE_CODES = {
    CloseReason.EXPIRED: 1,
    CloseReason.DISMISSED: 2,
    CloseReason.CLOSED: 3,
    CloseReason.REPLACED: 4,
    CloseReason.SUPPRESSED: 4,
    CloseReason.UNDEFINED: 4,
}


class NotificationState(str, Enum):
    """Lifecycle state of a notification."""
    PENDING = "pending"
    DISPLAYED = "displayed"
    CLOSED = "closed"


# Notifications

class Action(BaseModel):
    """Action key and its display label."""

    model_config = ConfigDict(frozen=True)

    key: str
    label: str


class NotificationRequest(BaseModel):
    """A validated, normalized Notify request."""

    app_name: str = ""
    replaces_id: int = Field(0, ge=0, le=MAX_NOTIFICATION_ID)
    icon: str = ""
    summary: str = ""
    body: str = ""
    actions: Tuple[Action, ...] = ()
    hints: Dict[str, Any] = Field(default_factory=dict)
    expire_timeout: int = Field(-1, ge=-1, description="-1 = policy default, 0 = never")

    @property
    def urgency(self) -> Urgency:
        value = self.hints.get("urgency")
        if value is None:
            return Urgency.NORMAL
        return Urgency.parse(value)

    @property
    def category(self) -> Optional[str]:
        return self.hints.get("category")

    @property
    def resident(self) -> bool:
        return bool(self.hints.get("resident", False))

    @property
    def transient(self) -> bool:
        return bool(self.hints.get("transient", False))

    @property
    def stack_tag(self) -> Optional[str]:
        for key in STACK_TAG_HINTS:
            value = self.hints.get(key)
            if value:
                return str(value)
        return None


class Notification(BaseModel):
    """A notification owned by the lifecycle manager."""

    id: int = Field(..., gt=0, le=MAX_NOTIFICATION_ID)
    app_name: str = ""
    summary: str = ""
    body: str = ""
    icon: str = ""
    actions: Tuple[Action, ...] = ()
    hints: Dict[str, Any] = Field(default_factory=dict)
    urgency: Urgency = Urgency.NORMAL
    category: Optional[str] = None
    resident: bool = False
    transient: bool = False
    group_key: Optional[str] = None
    requested_timeout: Optional[int] = Field(None, description="Client timeout in ms, None = policy default")
    effective_timeout: Optional[int] = Field(None, description="Timeout in ms, None = never expires")
    replaces_id: int = 0
    state: NotificationState = NotificationState.PENDING
    close_reason: Optional[CloseReason] = None
    generation: int = Field(1, ge=1, description="Timer generation token")
    sequence: int = Field(0, ge=0, description="Arrival order")
    created_at: float = Field(0.0, description="Monotonic clock time of (re)creation")
    received_at: datetime = Field(default_factory=datetime.now)
    duplicate_count: int = 0
    matched_rules: Tuple[str, ...] = ()

    @property
    def action_keys(self) -> Tuple[str, ...]:
        return tuple(action.key for action in self.actions)

    @property
    def never_expires(self) -> bool:
        return self.effective_timeout is None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-safe dictionary (hint values are opaque and omitted)."""
        data = self.model_dump(mode="json", exclude={"hints"})
        data["hint_keys"] = sorted(self.hints)
        return data


# Rule predicates (tagged by ``kind``)

class _TextPredicate(BaseModel):
    """Match a text field by equality, substring or regex search."""

    model_config = ConfigDict(frozen=True)

    equals: Optional[str] = None
    contains: Optional[str] = None
    pattern: Optional[str] = None

    @field_validator("pattern")
    @classmethod
    def validate_regex(cls, v: Optional[str]) -> Optional[str]:
        """Validate regex patterns."""
        if v is not None:
            try:
                re.compile(v)
            except re.error as e:
                raise ValueError(f"Invalid regex pattern: {e}")
        return v

    @model_validator(mode="after")
    def validate_single_test(self):
        """Exactly one of equals/contains/pattern must be given."""
        given = [name for name in ("equals", "contains", "pattern") if getattr(self, name) is not None]
        if len(given) != 1:
            raise ValueError("Exactly one of 'equals', 'contains' or 'pattern' must be specified")
        return self

    def test(self, value: Optional[str]) -> bool:
        if value is None:
            return False
        if self.equals is not None:
            return value == self.equals
        if self.contains is not None:
            return self.contains in value
        return re.search(self.pattern, value) is not None


class AppNamePredicate(_TextPredicate):
    kind: Literal["app_name"] = "app_name"


class SummaryPredicate(_TextPredicate):
    kind: Literal["summary"] = "summary"


class BodyPredicate(_TextPredicate):
    kind: Literal["body"] = "body"


class CategoryPredicate(_TextPredicate):
    kind: Literal["category"] = "category"


class UrgencyPredicate(BaseModel):
    """Match when the requested urgency is one of ``levels``."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["urgency"] = "urgency"
    levels: Tuple[Urgency, ...] = Field(..., min_length=1)

    @field_validator("levels", mode="before")
    @classmethod
    def parse_levels(cls, v: Any) -> Tuple[Urgency, ...]:
        if isinstance(v, (str, int)):
            v = [v]
        return tuple(Urgency.parse(level) for level in v)


Predicate = Annotated[
    Union[AppNamePredicate, SummaryPredicate, BodyPredicate, CategoryPredicate, UrgencyPredicate],
    Field(discriminator="kind"),
]


# Rule overrides (tagged by ``kind``)

class SetTimeout(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["timeout"] = "timeout"
    timeout_ms: int = Field(..., ge=0, description="0 = never expire")


class SetUrgency(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["urgency"] = "urgency"
    urgency: Urgency

    @field_validator("urgency", mode="before")
    @classmethod
    def parse_urgency(cls, v: Any) -> Urgency:
        return Urgency.parse(v)


class Suppress(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["suppress"] = "suppress"


class StripMarkup(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["strip_markup"] = "strip_markup"


class SetGroup(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["group"] = "group"
    key: str = Field(..., min_length=1)


Override = Annotated[
    Union[SetTimeout, SetUrgency, Suppress, StripMarkup, SetGroup],
    Field(discriminator="kind"),
]


class Rule(BaseModel):
    """User-defined policy rule.

    All predicates in ``match`` must hold for the rule to apply; an empty
    ``match`` matches every notification. ``stop`` halts evaluation after
    this rule has applied.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    name: str = Field(..., min_length=1, description="Rule identifier used in logs")
    match: Tuple[Predicate, ...] = Field(default=(), description="Predicates, all must match")
    overrides: Tuple[Override, ...] = Field(default=(), alias="set", description="Overrides to apply")
    stop: bool = Field(False, description="Stop evaluating later rules")


class PolicyOverrides(BaseModel):
    """Result of evaluating the rule set against one request."""

    model_config = ConfigDict(frozen=True)

    timeout_ms: Optional[int] = None
    urgency: Optional[Urgency] = None
    suppress: bool = False
    strip_markup: bool = False
    group_key: Optional[str] = None
    matched_rules: Tuple[str, ...] = ()


# Configuration

class DisplayPolicy(BaseModel):
    """Defaults and display limits."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    timeout_low_ms: int = Field(5000, ge=0)
    timeout_normal_ms: int = Field(5000, ge=0)
    timeout_critical_ms: int = Field(0, ge=0, description="0 = never expire")
    max_visible: Optional[int] = Field(None, ge=1, description="Cap on the visible queue")
    stack_duplicates: bool = True
    do_not_disturb: bool = Field(False, description="Initial do-not-disturb state")
    dnd_bypass_critical: bool = False
    resume_grace_ms: int = Field(1000, ge=0)

    def default_timeout_ms(self, urgency: Urgency) -> int:
        if urgency == Urgency.LOW:
            return self.timeout_low_ms
        if urgency == Urgency.CRITICAL:
            return self.timeout_critical_ms
        return self.timeout_normal_ms


class DndSchedule(BaseModel):
    """Daily do-not-disturb window; may cross midnight."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    start: Optional[dt_time] = None
    end: Optional[dt_time] = None

    @model_validator(mode="after")
    def validate_bounds(self):
        if (self.start is None) != (self.end is None):
            raise ValueError("dnd_schedule requires both 'start' and 'end'")
        return self

    @property
    def enabled(self) -> bool:
        return self.start is not None and self.start != self.end

    def covers(self, moment: dt_time) -> bool:
        if not self.enabled:
            return False
        if self.start < self.end:
            return self.start <= moment < self.end
        return moment >= self.start or moment < self.end


class HistoryConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    max_entries: int = Field(100, ge=1)
    persist: bool = False
    path: Optional[Path] = None


class RendererConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["log", "eww"] = "log"
    eww_config_dir: Optional[Path] = None
    eww_variable: str = "notifications"


class Policy(BaseModel):
    """Immutable policy installed into the lifecycle manager."""

    model_config = ConfigDict(frozen=True)

    display: DisplayPolicy = Field(default_factory=DisplayPolicy)
    rules: Tuple[Rule, ...] = ()


class DaemonConfig(BaseModel):
    """Parsed contents of config.toml."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    policy: DisplayPolicy = Field(default_factory=DisplayPolicy)
    dnd_schedule: DndSchedule = Field(default_factory=DndSchedule)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    renderer: RendererConfig = Field(default_factory=RendererConfig)
    rules: Tuple[Rule, ...] = ()

    def to_policy(self) -> Policy:
        return Policy(display=self.policy, rules=self.rules)


class HistoryEntry(BaseModel):
    """Summary of a closed notification kept in history."""

    id: int
    app_name: str
    summary: str
    body: str = ""
    urgency: Urgency = Urgency.NORMAL
    reason: CloseReason
    received_at: datetime
    closed_at: datetime = Field(default_factory=datetime.now)


# Lifecycle events

@dataclass(frozen=True)
class NotificationClosedEvent:
    notification_id: int
    reason: CloseReason


@dataclass(frozen=True)
class ActionInvokedEvent:
    notification_id: int
    action_key: str


@dataclass(frozen=True)
class VisibleQueueChanged:
    visible: Tuple[Notification, ...]


LifecycleEvent = Union[NotificationClosedEvent, ActionInvokedEvent, VisibleQueueChanged]
