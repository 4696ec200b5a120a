from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence, TypeVar

import segno

from .models import Activation


DATE_FORMAT = "%Y/%m/%d %H:%M:%S"
DEFAULT_DATE_RANGE = timedelta(days=30)
MAX_LIST_ITEMS = 100

T = TypeVar("T")


@dataclass(frozen=True)
class DateRange:
    start: datetime
    end: datetime
    # Filter values as the operator typed them, if they parsed.
    from_text: Optional[str] = None
    to_text: Optional[str] = None

    @property
    def from_date(self) -> str:
        return self.from_text if self.from_text is not None else self.start.strftime(DATE_FORMAT)

    @property
    def to_date(self) -> str:
        return self.to_text if self.to_text is not None else self.end.strftime(DATE_FORMAT)


def resolve_date_range(
    from_raw: Optional[str],
    to_raw: Optional[str],
    now: Optional[datetime] = None,
) -> DateRange:
    """Filter range for the activation detail page.

    ``to`` defaults to one second past ``now`` so the newest signatures and
    history entries are not cut off; ``from`` defaults to 30 days before
    ``to``. A value that does not parse resets both ends to the defaults;
    values that do parse are shown back to the operator unchanged.
    """
    default_end = (now or datetime.now()).replace(microsecond=0) + timedelta(seconds=1)
    try:
        end = datetime.strptime(to_raw, DATE_FORMAT) if to_raw is not None else default_end
        start = datetime.strptime(from_raw, DATE_FORMAT) if from_raw is not None else end - DEFAULT_DATE_RANGE
    except ValueError:
        return DateRange(start=default_end - DEFAULT_DATE_RANGE, end=default_end)
    return DateRange(start=start, end=end, from_text=from_raw, to_text=to_raw)


def trim(items: Sequence[T], limit: int = MAX_LIST_ITEMS) -> List[T]:
    return list(items[:limit])


def sort_by_last_used(activations: Iterable[Activation]) -> List[Activation]:
    """Most recently used first; never-used activations go last."""
    items = list(activations)
    used = [a for a in items if a.timestamp_last_used is not None]
    unused = [a for a in items if a.timestamp_last_used is None]
    return sorted(used, key=lambda a: a.timestamp_last_used, reverse=True) + unused


def encode_qr(text: str, size: int = 400) -> str:
    """PNG data URI with a QR code of roughly ``size`` pixels per side."""
    qr = segno.make(text, micro=False)
    width, _height = qr.symbol_size(scale=1)
    scale = max(1, size // width)
    return qr.png_data_uri(scale=scale)


def is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def enum_label(value) -> str:
    if value is None:
        return ""
    return str(getattr(value, "value", value))


def format_timestamp(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    return value.strftime(DATE_FORMAT)
