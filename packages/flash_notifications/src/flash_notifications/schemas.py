"""Pydantic schemas/data contracts for notification options and triggers."""

import zoneinfo
from datetime import datetime, timezone
from enum import Enum, auto
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_serializer,
    field_validator,
    model_validator,
)

from .exceptions import InvalidSpecification

INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1


def validate_timezone(v: Any) -> Any:
    """Ensure the value is a valid timezone or ZoneInfo object."""
    if v is None or isinstance(v, (timezone, zoneinfo.ZoneInfo)):
        return v
    if isinstance(v, str):
        try:
            return zoneinfo.ZoneInfo(v)
        except (zoneinfo.ZoneInfoNotFoundError, ValueError) as z:
            msg = f"Invalid timezone name: {v}"
            raise ValueError(msg) from z
    msg = f"Invalid timezone type: {type(v).__name__}"
    raise ValueError(msg)


def parse_instant(v: Any) -> Any:
    """
    Accept the instant shapes a host bridge sends.

    Epoch milliseconds (JavaScript ``Date.getTime()``) and ISO-8601 strings are
    converted; naive datetimes are rejected so fire times are never ambiguous.
    """
    if v is None:
        return v
    if isinstance(v, bool):
        raise ValueError("Expected a timestamp, got a boolean")
    if isinstance(v, (int, float)):
        try:
            return datetime.fromtimestamp(v / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as e:
            raise ValueError(f"Timestamp out of range: {v}") from e
    if isinstance(v, str):
        try:
            v = datetime.fromisoformat(v.replace("Z", "+00:00"))
        except ValueError as e:
            raise ValueError(f"Invalid ISO-8601 timestamp: {v}") from e
    if isinstance(v, datetime) and v.tzinfo is None:
        raise ValueError("timestamp must be timezone-aware")
    return v


# Pydantic V2 cannot build a core schema for datetime.timezone, hence Any.
TzType = Annotated[Any, BeforeValidator(validate_timezone)]
Instant = Annotated[datetime, BeforeValidator(parse_instant)]


def _serialize_tz(v: Any) -> str | None:
    if isinstance(v, zoneinfo.ZoneInfo):
        return v.key
    if isinstance(v, timezone):
        return "UTC" if v == timezone.utc else str(v)
    return None


class TriggerUnit(str, Enum):
    """Step size of an interval trigger."""

    SECOND = "second"
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"


class AlarmType(Enum):
    """Delivery priority hint handed to the alarm service."""

    RTC_WAKEUP = 0
    RTC = 1
    ELAPSED_REALTIME_WAKEUP = 2
    ELAPSED_REALTIME = 3


class NotificationType(Enum):
    """Query scope, numbered the way the host bridge sends it."""

    ALL = 0
    SCHEDULED = 1
    TRIGGERED = 2


class NotificationStatus(Enum):
    """Lifecycle state of a notification entry."""

    SCHEDULED = auto()
    TRIGGERED = auto()
    RETIRED = auto()


class AtTriggerConfig(BaseModel):
    """Fire exactly once at an absolute instant."""

    trigger_type: Literal["at"] = "at"
    at: Instant


class InTriggerConfig(BaseModel):
    """
    Fire once, ``amount`` units after construction.

    The absolute instant is resolved when the options are parsed and is
    persisted, so a restore does not push the fire time further out.
    """

    trigger_type: Literal["in"] = "in"
    amount: int = Field(ge=0)
    unit: TriggerUnit = TriggerUnit.SECOND
    at: Instant


class EveryIntervalTriggerConfig(BaseModel):
    """Fire every ``every`` unit starting at ``start_at``."""

    trigger_type: Literal["every"] = "every"
    every: TriggerUnit
    count: int | None = Field(default=None, ge=1)
    start_at: Instant
    before: Instant | None = None
    after: Instant | None = None
    tz: TzType | None = None

    @field_serializer("tz")
    def serialize_timezone(self, v: Any) -> str | None:
        return _serialize_tz(v)

    @model_validator(mode="after")
    def validate_bounds(self) -> "EveryIntervalTriggerConfig":
        if self.before and self.after and self.before <= self.after:
            raise ValueError("before must be later than after")
        return self


class MatchFields(BaseModel):
    """Calendar components an occurrence must match. Weekday is ISO (1=Monday)."""

    model_config = ConfigDict(extra="forbid")

    year: int | None = Field(default=None, ge=1970, le=9999)
    month: int | None = Field(default=None, ge=1, le=12)
    day: int | None = Field(default=None, ge=1, le=31)
    weekday: int | None = Field(default=None, ge=1, le=7)
    hour: int | None = Field(default=None, ge=0, le=23)
    minute: int | None = Field(default=None, ge=0, le=59)
    second: int | None = Field(default=None, ge=0, le=59)

    @model_validator(mode="after")
    def validate_not_empty(self) -> "MatchFields":
        if all(v is None for v in self.model_dump().values()):
            raise ValueError("at least one calendar field must be specified")
        return self


class EveryMatchTriggerConfig(BaseModel):
    """Fire whenever the calendar matches every field in ``every``."""

    trigger_type: Literal["match"] = "match"
    every: MatchFields
    count: int | None = Field(default=None, ge=1)
    before: Instant | None = None
    after: Instant | None = None
    tz: TzType | None = None

    @field_serializer("tz")
    def serialize_timezone(self, v: Any) -> str | None:
        return _serialize_tz(v)

    @model_validator(mode="after")
    def validate_bounds(self) -> "EveryMatchTriggerConfig":
        if self.before and self.after and self.before <= self.after:
            raise ValueError("before must be later than after")
        return self


TriggerConfig = Annotated[
    Union[
        AtTriggerConfig,
        InTriggerConfig,
        EveryIntervalTriggerConfig,
        EveryMatchTriggerConfig,
    ],
    Field(discriminator="trigger_type"),
]


def _context_now(info: ValidationInfo) -> datetime:
    context = info.context or {}
    return context.get("now") or datetime.now(timezone.utc)


def _normalize_trigger(raw: Any, info: ValidationInfo) -> Any:
    """
    Translate the host's trigger shapes into a tagged trigger config.

    Shapes accepted (already tagged dicts pass through untouched):
        {"at": 1730019600000}
        {"in": 1, "unit": "hour"}
        {"every": "day", "count": 5, "firstAt": ..., "before": ..., "after": ...}
        {"every": {"month": 10, "day": 27, "hour": 9, "minute": 0}}
    """
    now = _context_now(info)
    if raw is None:
        return {"trigger_type": "at", "at": now}
    if not isinstance(raw, dict) or "trigger_type" in raw:
        return raw

    data = dict(raw)
    tz = data.get("tz") or (info.context or {}).get("tz")

    if "in" in data:
        amount = data.pop("in")
        unit = data.get("unit", "second")
        if isinstance(amount, int) and not isinstance(amount, bool) and amount >= 0:
            try:
                data["at"] = _add_units(now, TriggerUnit(unit), amount)
            except ValueError:
                pass  # the model reports the bad unit
        data.update(trigger_type="in", amount=amount, unit=unit)
        return data

    if "every" in data:
        every = data["every"]
        if isinstance(every, dict):
            data.update(trigger_type="match")
        else:
            start = data.pop("firstAt", None) or data.pop("startAt", None)
            data.setdefault("start_at", start or now)
            data.update(trigger_type="every")
        if tz is not None:
            data["tz"] = tz
        return data

    data.setdefault("at", now)
    data.update(trigger_type="at")
    return data


def _add_units(start: datetime, unit: TriggerUnit, amount: int) -> datetime:
    # Deferred to keep schemas importable without the trigger package
    from .triggers.interval import add_units

    return add_units(start, unit, amount, start.tzinfo or timezone.utc)


class NotificationOptions(BaseModel):
    """
    Validated description of one notification.

    Visual and channel fields are opaque to the engine: they are kept, merged
    and persisted but only ever interpreted by the presentation service.
    Unknown keys are preserved for the same reason.

    Examples:
        >>> opts = NotificationOptions.parse(
        ...     {"id": 7, "title": "Stand-up", "trigger": {"every": "day", "count": 5}}
        ... )
        >>> opts.repeating
        True
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: int = Field(default=0, ge=INT32_MIN, le=INT32_MAX)
    trigger: TriggerConfig
    allow_while_idle: bool = Field(default=False, alias="androidAllowWhileIdle")
    alarm_type: AlarmType = Field(default=AlarmType.RTC_WAKEUP, alias="androidAlarmType")

    title: str = ""
    text: str = ""
    channel: str | None = None
    sound: str | bool | None = None
    badge: int | None = None
    icon: str | None = None
    group: str | None = None
    data: Any = None

    @field_validator("trigger", mode="before")
    @classmethod
    def normalize_trigger(cls, v: Any, info: ValidationInfo) -> Any:
        return _normalize_trigger(v, info)

    @model_validator(mode="before")
    @classmethod
    def default_trigger(cls, data: Any) -> Any:
        if isinstance(data, dict) and "trigger" not in data:
            data = {**data, "trigger": None}
        return data

    @field_serializer("alarm_type")
    def serialize_alarm_type(self, v: AlarmType) -> int:
        return v.value

    @field_validator("alarm_type", mode="before")
    @classmethod
    def coerce_alarm_type(cls, v: Any) -> Any:
        if isinstance(v, str) and v in AlarmType.__members__:
            return AlarmType[v]
        return v

    @property
    def repeating(self) -> bool:
        """True when more than one occurrence is possible."""
        trigger = self.trigger
        if isinstance(trigger, EveryIntervalTriggerConfig):
            return trigger.count != 1
        if isinstance(trigger, EveryMatchTriggerConfig):
            return trigger.count != 1
        return False

    def content(self) -> dict[str, Any]:
        """Renderable payload handed to the presentation service."""
        return self.model_dump(mode="json", exclude={"trigger"})

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def parse(
        cls,
        raw: Any,
        now: datetime | None = None,
        tz: Any = None,
    ) -> "NotificationOptions":
        """
        Parse untyped input into validated options.

        Args:
            raw: A dict in the host's JSON shape, or an existing options model.
            now: Construction time used to resolve relative triggers.
            tz: Default timezone for calendar triggers without one.

        Raises:
            InvalidSpecification: naming the first offending field.
        """
        if isinstance(raw, cls):
            return raw
        if not isinstance(raw, dict):
            raise InvalidSpecification("options", "expected an object")
        context = {"now": now or datetime.now(timezone.utc), "tz": tz}
        try:
            return cls.model_validate(raw, context=context)
        except ValidationError as e:
            error = e.errors()[0]
            loc = [str(part) for part in error["loc"]]
            # Drop the union tag pydantic inserts after "trigger"
            if len(loc) > 1 and loc[0] == "trigger" and loc[1] in _TRIGGER_TAGS:
                del loc[1]
            raise InvalidSpecification(".".join(loc) or "options", error["msg"]) from e

    @classmethod
    def from_json(cls, payload: str | bytes) -> "NotificationOptions":
        try:
            return cls.model_validate_json(payload)
        except ValidationError as e:
            raise InvalidSpecification("options", str(e)) from e


_TRIGGER_TAGS = {"at", "in", "every", "match"}
