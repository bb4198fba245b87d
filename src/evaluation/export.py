"""
Export of evaluation results.

One CSV row per item in result (title) order, plus an optional JSON dump of
the raw provider payloads for audit.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Iterable

import pandas as pd
import structlog

from .config import DIAGNOSTIC_PENDING, EXPORT_COLUMNS, SDK_COLUMN_TEMPLATE
from .models import EvaluationItem

logger = structlog.get_logger(__name__)


def results_to_dataframe(
    items: Iterable[EvaluationItem],
    include_sdk: bool = True,
) -> pd.DataFrame:
    """
    Build the results table.

    SDK columns (``SDK <tag>``) are added in first-seen tag order when
    ``include_sdk`` is set and at least one item has SDK diagnostics.

    Args:
        items: Items in the order they should appear.
        include_sdk: Whether to add per-endpoint SDK columns.

    Returns:
        DataFrame with ``EXPORT_COLUMNS`` followed by any SDK columns.
    """
    items = list(items)

    sdk_tags: list[str] = []
    if include_sdk:
        for item in items:
            for tag in item.sdk_diagnostics:
                if tag not in sdk_tags:
                    sdk_tags.append(tag)

    rows = []
    for item in items:
        row = {
            "Title": item.title,
            "Source": item.source_ref,
            "Resolution": item.resolution,
            "Size": item.size_formatted,
            "Diagnostic": item.diagnostic or DIAGNOSTIC_PENDING,
            "Error": item.error_message or "",
        }
        for tag in sdk_tags:
            row[SDK_COLUMN_TEMPLATE.format(tag=tag)] = item.sdk_diagnostics.get(tag, "")
        rows.append(row)

    columns = EXPORT_COLUMNS + [SDK_COLUMN_TEMPLATE.format(tag=t) for t in sdk_tags]
    return pd.DataFrame(rows, columns=columns)


def export_results_csv(
    items: Iterable[EvaluationItem],
    output_path: Path,
    include_sdk: bool = True,
) -> pd.DataFrame:
    """
    Write the results table to CSV (UTF-8, no index).

    Returns:
        The DataFrame that was written.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    df = results_to_dataframe(items, include_sdk=include_sdk)
    df.to_csv(output_path, index=False, encoding="utf-8")

    logger.info("results_exported", path=str(output_path), rows=len(df))
    return df


def export_raw_responses_json(items: Iterable[EvaluationItem], output_path: Path) -> int:
    """
    Write ``{source: {"saas": <raw>, "sdk": {tag: <raw>}}}`` for every item
    that received at least one provider payload.

    Returns:
        Number of items written.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    payloads = {}
    for item in items:
        if item.raw_response is None and not item.sdk_raw_responses:
            continue
        payloads[item.source_ref] = {
            "saas": item.raw_response,
            "sdk": item.sdk_raw_responses,
        }

    with output_path.open("w", encoding="utf-8") as fh:
        json.dump(payloads, fh, ensure_ascii=False, indent=2)

    logger.info("raw_responses_exported", path=str(output_path), items=len(payloads))
    return len(payloads)
