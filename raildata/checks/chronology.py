"""
Chronology check: dates are ordered inside events and across events.

Dates are often fuzzy ("c1884", "1884-05?"), so a date only counts as out
of order when it is certainly earlier: its year is smaller, or the year
matches and a month or day given in both is smaller.
"""

from typing import Iterator, Optional

from ..rail_findings import DATE_ORDER, Finding
from ..rail_model import Date, Document, LineEvent
from .core import CheckContext, finding


def certainly_before(a: Date, b: Date) -> bool:
    """Whether a lies before b whatever their precision."""
    if a.year != b.year:
        return a.year < b.year
    if a.month is None or b.month is None:
        return False
    if a.month != b.month:
        return a.month < b.month
    if a.day is None or b.day is None:
        return False
    return a.day < b.day


def _event_findings(document: Document) -> Iterator[Finding]:
    previous: Optional[Date] = None
    for idx, event in enumerate(getattr(document, "events", ())):
        dates = event.date
        for pos in range(1, len(dates)):
            if certainly_before(dates[pos], dates[pos - 1]):
                yield finding(
                    document,
                    f"date {dates[pos]} comes before {dates[pos - 1]}",
                    field=f"events[{idx}].date[{pos}]",
                    code=DATE_ORDER,
                )
        if not dates:
            continue
        if previous is not None and certainly_before(dates[0], previous):
            yield finding(
                document,
                f"event dated {dates[0]} follows an event dated {previous}",
                field=f"events[{idx}].date",
                code=DATE_ORDER,
            )
        previous = max(previous, dates[0]) if previous is not None else dates[0]

        if isinstance(event, LineEvent):
            for name in ("concession", "expropriation"):
                grant = getattr(event, name)
                if grant is not None and grant.until is not None:
                    if certainly_before(grant.until, dates[0]):
                        yield finding(
                            document,
                            f"{name} ends {grant.until}, before the event date {dates[0]}",
                            field=f"events[{idx}].{name}.until",
                            code=DATE_ORDER,
                        )


def event_order(context: CheckContext) -> Iterator[Finding]:
    """Dates inside events ascend and events are in chronological order."""
    for document in context.store:
        yield from _event_findings(document)
