from __future__ import annotations

import csv
import logging
from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterable, TypeVar

from adsync.util import to_float, to_int

logger = logging.getLogger(__name__)

R = TypeVar("R")


def read_text_best_effort(data: bytes) -> str:
    for enc in ("utf-8-sig", "utf-8", "cp949"):
        try:
            return data.decode(enc)
        except UnicodeDecodeError:
            continue
    return data.decode("utf-8", errors="replace")


def parse_delimited(text: str, delimiter: str = "\t") -> list[list[str]]:
    """
    Split report text into rows of trimmed string fields.

    Blank lines and lines whose first field is empty are skipped. Column counts
    are not checked here; see `to_records`.
    """
    lines = [ln for ln in (text or "").strip().splitlines() if ln.strip() != ""]
    if not lines:
        return []
    reader = csv.reader(lines, delimiter=delimiter, quoting=csv.QUOTE_NONE)
    rows = [[v.strip() for v in values] for values in reader]
    return [r for r in rows if r and r[0]]


@dataclass(frozen=True)
class AdStatRow:
    date: str
    customer_id: str
    campaign_id: str
    adgroup_id: str
    keyword_id: str
    ad_id: str
    business_channel_id: str
    media_code: str
    pc_mobile_type: str
    impressions: int
    clicks: int
    cost: float
    sum_ad_rank: int
    view_count: int


@dataclass(frozen=True)
class ConversionStatRow:
    date: str
    customer_id: str
    campaign_id: str
    adgroup_id: str
    keyword_id: str
    ad_id: str
    business_channel_id: str
    media_code: str
    pc_mobile_type: str
    conversion_method: str
    conversion_type: str
    conversion_count: int
    conversion_value: float


def _as_str(v: str) -> str:
    return v


_CONVERTERS: dict[str, Callable[[str], Any]] = {"str": _as_str, "int": to_int, "float": to_float}


@dataclass(frozen=True)
class Column:
    name: str
    index: int
    kind: str = "str"


@dataclass(frozen=True)
class ReportSchema(Generic[R]):
    """Fixed column positions of a header-less report file."""

    report_type: str
    record_type: Callable[..., R]
    columns: tuple[Column, ...]

    @property
    def min_columns(self) -> int:
        return max(c.index for c in self.columns) + 1


_DIMENSIONS = (
    Column("date", 0),
    Column("customer_id", 1),
    Column("campaign_id", 2),
    Column("adgroup_id", 3),
    Column("keyword_id", 4),
    Column("ad_id", 5),
    Column("business_channel_id", 6),
    Column("media_code", 7),
    Column("pc_mobile_type", 8),
)

AD_REPORT_SCHEMA: ReportSchema[AdStatRow] = ReportSchema(
    report_type="AD",
    record_type=AdStatRow,
    columns=_DIMENSIONS
    + (
        Column("impressions", 9, "int"),
        Column("clicks", 10, "int"),
        Column("cost", 11, "float"),
        Column("sum_ad_rank", 12, "int"),
        Column("view_count", 13, "int"),
    ),
)

CONVERSION_REPORT_SCHEMA: ReportSchema[ConversionStatRow] = ReportSchema(
    report_type="AD_CONVERSION",
    record_type=ConversionStatRow,
    columns=_DIMENSIONS
    + (
        Column("conversion_method", 9),
        Column("conversion_type", 10),
        Column("conversion_count", 11, "int"),
        Column("conversion_value", 12, "float"),
    ),
)


def to_records(rows: Iterable[list[str]], schema: ReportSchema[R]) -> list[R]:
    """Map raw rows onto `schema.record_type`, dropping rows that are too short."""
    need = schema.min_columns
    out: list[R] = []
    dropped = 0
    for row in rows:
        if len(row) < need:
            dropped += 1
            continue
        kwargs = {c.name: _CONVERTERS[c.kind](row[c.index]) for c in schema.columns}
        out.append(schema.record_type(**kwargs))
    logger.info("%s report: %d records (%d short rows dropped)", schema.report_type, len(out), dropped)
    return out
