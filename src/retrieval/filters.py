"""Translate a structured query request into a vector-store filter expression."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from src.errors import ValidationError
from src.pipeline_config import ContentType
from src.retrieval.models import DateRange, QueryRequest

logger = logging.getLogger(__name__)


def build_filter(request: QueryRequest) -> dict[str, Any] | None:
    """Build an AND-combined metadata filter, or None when nothing applies.

    - ``documentType``: exact match unless the content type is ``all``
    - ``source``: exact match
    - ``topic``: one of the requested topics
    - ``speakers``: overlaps the requested speakers
    - ``meetingDate``: within ``[start, end]`` (ISO-8601 string comparison);
      an invalid range is dropped rather than rejecting the query
    """
    filters: dict[str, Any] = {}

    if request.content_type is not ContentType.ALL:
        filters["documentType"] = request.content_type.value

    flt = request.filter
    if flt is not None:
        if flt.source:
            filters["source"] = flt.source
        if flt.topics:
            filters["topic"] = {"$in": list(flt.topics)}
        if flt.speakers:
            filters["speakers"] = {"$in": list(flt.speakers)}
        if flt.date_range is not None:
            try:
                filters["meetingDate"] = date_range_filter(flt.date_range)
            except ValidationError as exc:
                logger.warning("Ignoring date filter: %s", exc.message)

    return filters or None


def date_range_filter(date_range: DateRange) -> dict[str, str]:
    """Validate both ends as ISO-8601 and return a ``$gte``/``$lte`` clause.

    Raises:
        ValidationError: If either end is not a valid ISO-8601 date.
    """
    for label, value in (("start", date_range.start), ("end", date_range.end)):
        try:
            datetime.fromisoformat(value)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid {label} date {value!r}") from exc
    return {"$gte": date_range.start, "$lte": date_range.end}
