from __future__ import annotations

from datetime import date
from decimal import Decimal
from functools import lru_cache

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from sqlalchemy import create_engine

from reminders.config import get_settings, system_clock
from reminders.errors import SeriesNotFound
from reminders.logs import configure_logging
from reminders.recurrence import RecurrenceRule, build_rule, end_condition_fields
from reminders.series import DELETED, ExternalLinks, Modified, ProjectedOccurrence, Series
from reminders.service import ReminderService, SeriesChanges
from reminders.splitter import SplitDetails
from reminders.store import SeriesStore
from reminders.timeline import MonthBucket, classify

settings = get_settings()
configure_logging(settings)

app = FastAPI()
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache
def get_service() -> ReminderService:
    engine = create_engine(settings.database_url, connect_args=settings.connect_args)
    store = SeriesStore(engine)
    store.create_schema()
    return ReminderService(
        store,
        clock=system_clock(settings),
        lookback_months=settings.lookback_months,
        lookahead_months=settings.lookahead_months,
    )


class RecurrencePayload(BaseModel):
    type: str = "once"
    interval: int = 1
    days_of_week: list[int] | None = None
    end_type: str = "never"
    end_count: int | None = None
    end_date: date | None = None

    def to_rule(self) -> RecurrenceRule:
        return build_rule(
            kind=self.type,
            interval=self.interval,
            days_of_week=self.days_of_week,
            end_type=self.end_type,
            end_count=self.end_count,
            end_date=self.end_date,
        )

    @classmethod
    def from_rule(cls, rule: RecurrenceRule) -> "RecurrencePayload":
        end_type, end_count, end_date = end_condition_fields(rule.end)
        return cls(
            type=rule.kind,
            interval=rule.interval,
            days_of_week=sorted(rule.days_of_week) if rule.days_of_week is not None else None,
            end_type=end_type,
            end_count=end_count,
            end_date=end_date,
        )


class ReminderPayload(BaseModel):
    title: str
    amount: Decimal
    due_date: date
    recurrence: RecurrencePayload = Field(default_factory=RecurrencePayload)
    template_id: str | None = None
    fixed_expense_id: str | None = None


class ReminderUpdatePayload(BaseModel):
    title: str | None = None
    amount: Decimal | None = None
    due_date: date | None = None
    recurrence: RecurrencePayload | None = None
    template_id: str | None = None
    fixed_expense_id: str | None = None


class ExceptionPayload(BaseModel):
    original_date: date
    action: str
    new_title: str | None = None
    new_amount: Decimal | None = None
    new_date: date | None = None
    is_paid: bool | None = None
    linked_transaction_id: str | None = None


class ExceptionResponse(ExceptionPayload):
    pass


class SplitPayload(BaseModel):
    split_date: date
    title: str | None = None
    amount: Decimal | None = None
    recurrence: RecurrencePayload | None = None


class SplitResponse(BaseModel):
    terminated_id: int
    new_id: int


class PayPayload(BaseModel):
    transaction_id: str | None = None
    original_date: date | None = None


class ReminderResponse(BaseModel):
    id: int
    user_id: int
    title: str
    amount: Decimal
    due_date: date
    is_paid: bool
    recurrence: RecurrencePayload
    template_id: str | None = None
    fixed_expense_id: str | None = None
    linked_transaction_id: str | None = None
    exceptions: list[ExceptionResponse] = Field(default_factory=list)


class OccurrenceResponse(BaseModel):
    series_id: int
    original_date: date
    scheduled_date: date
    title: str
    amount: Decimal
    is_paid: bool
    is_projected: bool
    status: str
    linked_transaction_id: str | None = None


class MonthBucketResponse(BaseModel):
    key: str
    label: str
    year: int
    month: int
    is_current_month: bool
    is_past_month: bool
    occurrences: list[OccurrenceResponse]


class TimelineResponse(BaseModel):
    today: date
    overdue_count: int
    months: list[MonthBucketResponse]


def get_user_id(x_user_id: str | None) -> int:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user identity.")
    try:
        return int(x_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid user identity.") from exc


def to_http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, SeriesNotFound):
        return HTTPException(status_code=404, detail="Reminder not found.")
    return HTTPException(status_code=400, detail=str(exc))


def reminder_response(series: Series) -> ReminderResponse:
    exceptions = []
    for original_date, exception in sorted(series.exceptions.items()):
        if isinstance(exception, Modified):
            exceptions.append(
                ExceptionResponse(
                    original_date=original_date,
                    action="modified",
                    new_title=exception.title,
                    new_amount=exception.amount,
                    new_date=exception.date,
                    is_paid=exception.paid,
                    linked_transaction_id=exception.linked_transaction,
                )
            )
        else:
            exceptions.append(ExceptionResponse(original_date=original_date, action="deleted"))
    return ReminderResponse(
        id=series.id,
        user_id=series.user_id,
        title=series.title,
        amount=series.amount,
        due_date=series.anchor_date,
        is_paid=series.paid,
        recurrence=RecurrencePayload.from_rule(series.rule),
        template_id=series.links.template_id,
        fixed_expense_id=series.links.fixed_expense_id,
        linked_transaction_id=series.links.transaction_id,
        exceptions=exceptions,
    )


def occurrence_response(occurrence: ProjectedOccurrence, today: date) -> OccurrenceResponse:
    return OccurrenceResponse(
        series_id=occurrence.source_series_id,
        original_date=occurrence.original_date,
        scheduled_date=occurrence.scheduled_date,
        title=occurrence.title,
        amount=occurrence.amount,
        is_paid=occurrence.paid,
        is_projected=occurrence.is_projected,
        status=classify(occurrence, today).value,
        linked_transaction_id=occurrence.linked_transaction,
    )


def month_response(bucket: MonthBucket, today: date) -> MonthBucketResponse:
    return MonthBucketResponse(
        key=bucket.key,
        label=bucket.label,
        year=bucket.year,
        month=bucket.month,
        is_current_month=bucket.is_current_month,
        is_past_month=bucket.is_past_month,
        occurrences=[occurrence_response(item, today) for item in bucket.occurrences],
    )


def exception_from_payload(payload: ExceptionPayload):
    action = payload.action.strip().lower()
    if action == "deleted":
        return DELETED
    if action == "modified":
        return Modified(
            title=payload.new_title.strip() if payload.new_title else None,
            amount=payload.new_amount,
            date=payload.new_date,
            paid=payload.is_paid,
            linked_transaction=payload.linked_transaction_id,
        )
    raise ValueError("Exception action must be deleted or modified.")


@app.get("/reminders", response_model=list[ReminderResponse])
def list_reminders(
    x_user_id: str | None = Header(None, alias="x-user-id"),
    service: ReminderService = Depends(get_service),
) -> list[ReminderResponse]:
    user_id = get_user_id(x_user_id)
    return [reminder_response(series) for series in service.list_series(user_id)]


@app.post("/reminders", response_model=ReminderResponse, status_code=201)
def create_reminder(
    payload: ReminderPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    service: ReminderService = Depends(get_service),
) -> ReminderResponse:
    user_id = get_user_id(x_user_id)
    try:
        series = service.create(
            user_id,
            title=payload.title,
            amount=payload.amount,
            anchor_date=payload.due_date,
            rule=payload.recurrence.to_rule(),
            links=ExternalLinks(
                template_id=payload.template_id,
                fixed_expense_id=payload.fixed_expense_id,
            ),
        )
    except ValueError as exc:
        raise to_http_error(exc) from exc
    return reminder_response(series)


@app.get("/reminders/timeline", response_model=TimelineResponse)
def reminders_timeline(
    months_back: int | None = Query(None, ge=0),
    months_ahead: int | None = Query(None, ge=0),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    service: ReminderService = Depends(get_service),
) -> TimelineResponse:
    user_id = get_user_id(x_user_id)
    timeline = service.timeline(user_id, months_back, months_ahead)
    return TimelineResponse(
        today=timeline.today,
        overdue_count=timeline.overdue_count,
        months=[month_response(bucket, timeline.today) for bucket in timeline.months],
    )


@app.get("/reminders/{reminder_id}", response_model=ReminderResponse)
def get_reminder(
    reminder_id: int,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    service: ReminderService = Depends(get_service),
) -> ReminderResponse:
    user_id = get_user_id(x_user_id)
    try:
        series = service.get(reminder_id, user_id)
    except SeriesNotFound as exc:
        raise to_http_error(exc) from exc
    return reminder_response(series)


@app.put("/reminders/{reminder_id}", response_model=ReminderResponse)
def update_reminder(
    reminder_id: int,
    payload: ReminderUpdatePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    service: ReminderService = Depends(get_service),
) -> ReminderResponse:
    user_id = get_user_id(x_user_id)
    try:
        changes = SeriesChanges(
            title=payload.title,
            amount=payload.amount,
            anchor_date=payload.due_date,
            rule=payload.recurrence.to_rule() if payload.recurrence else None,
            template_id=payload.template_id,
            fixed_expense_id=payload.fixed_expense_id,
        )
        series = service.update(reminder_id, changes, user_id)
    except (SeriesNotFound, ValueError) as exc:
        raise to_http_error(exc) from exc
    return reminder_response(series)


@app.delete("/reminders/{reminder_id}")
def delete_reminder(
    reminder_id: int,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    service: ReminderService = Depends(get_service),
) -> dict:
    user_id = get_user_id(x_user_id)
    try:
        service.delete(reminder_id, user_id)
    except SeriesNotFound as exc:
        raise to_http_error(exc) from exc
    return {"status": "deleted"}


@app.delete("/reminders/{reminder_id}/occurrences/{original_date}")
def delete_occurrence(
    reminder_id: int,
    original_date: date,
    scope: str = Query("this"),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    service: ReminderService = Depends(get_service),
) -> dict:
    user_id = get_user_id(x_user_id)
    scope = scope.strip().lower()
    try:
        if scope == "this":
            service.apply_exception(reminder_id, original_date, DELETED, user_id)
        elif scope == "future":
            series = service.get(reminder_id, user_id)
            if original_date == series.anchor_date:
                service.delete(reminder_id, user_id)
            else:
                service.end_before(reminder_id, original_date, user_id)
        elif scope == "all":
            service.delete(reminder_id, user_id)
        else:
            raise ValueError("Scope must be this, future, or all.")
    except (SeriesNotFound, ValueError) as exc:
        raise to_http_error(exc) from exc
    return {"status": "deleted", "scope": scope}


@app.get("/reminders/{reminder_id}/occurrences", response_model=list[OccurrenceResponse])
def list_occurrences(
    reminder_id: int,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    service: ReminderService = Depends(get_service),
) -> list[OccurrenceResponse]:
    user_id = get_user_id(x_user_id)
    try:
        occurrences = service.occurrences(reminder_id, user_id)
    except SeriesNotFound as exc:
        raise to_http_error(exc) from exc
    today = service.today()
    return [occurrence_response(occurrence, today) for occurrence in occurrences]


@app.post("/reminders/{reminder_id}/pay", response_model=ReminderResponse)
def pay_reminder(
    reminder_id: int,
    payload: PayPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    service: ReminderService = Depends(get_service),
) -> ReminderResponse:
    user_id = get_user_id(x_user_id)
    try:
        if payload.original_date is None:
            series = service.mark_paid(reminder_id, payload.transaction_id, user_id)
        else:
            if not payload.transaction_id:
                raise ValueError("Paying a single occurrence requires a transaction.")
            series = service.pay_occurrence(
                reminder_id, payload.original_date, payload.transaction_id, user_id
            )
    except (SeriesNotFound, ValueError) as exc:
        raise to_http_error(exc) from exc
    return reminder_response(series)


@app.post("/reminders/{reminder_id}/exceptions", response_model=ReminderResponse)
def create_exception(
    reminder_id: int,
    payload: ExceptionPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    service: ReminderService = Depends(get_service),
) -> ReminderResponse:
    user_id = get_user_id(x_user_id)
    try:
        exception = exception_from_payload(payload)
        series = service.apply_exception(reminder_id, payload.original_date, exception, user_id)
    except (SeriesNotFound, ValueError) as exc:
        raise to_http_error(exc) from exc
    return reminder_response(series)


@app.delete("/reminders/{reminder_id}/exceptions/{original_date}", response_model=ReminderResponse)
def delete_exception(
    reminder_id: int,
    original_date: date,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    service: ReminderService = Depends(get_service),
) -> ReminderResponse:
    user_id = get_user_id(x_user_id)
    try:
        series = service.remove_exception(reminder_id, original_date, user_id)
    except (SeriesNotFound, ValueError) as exc:
        raise to_http_error(exc) from exc
    return reminder_response(series)


@app.post("/reminders/{reminder_id}/split", response_model=SplitResponse)
def split_reminder(
    reminder_id: int,
    payload: SplitPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    service: ReminderService = Depends(get_service),
) -> SplitResponse:
    user_id = get_user_id(x_user_id)
    try:
        details = SplitDetails(
            title=payload.title.strip() if payload.title else None,
            amount=payload.amount,
            rule=payload.recurrence.to_rule() if payload.recurrence else None,
        )
        terminated_id, new_id = service.split(reminder_id, payload.split_date, details, user_id)
    except (SeriesNotFound, ValueError) as exc:
        raise to_http_error(exc) from exc
    return SplitResponse(terminated_id=terminated_id, new_id=new_id)


@app.post("/transactions/{transaction_id}/release", response_model=list[ReminderResponse])
def release_transaction(
    transaction_id: str,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    service: ReminderService = Depends(get_service),
) -> list[ReminderResponse]:
    user_id = get_user_id(x_user_id)
    released = service.release_transaction(transaction_id, user_id)
    return [reminder_response(series) for series in released]
