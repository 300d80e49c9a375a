"""Database result formatting for AI consumption."""

import json
from datetime import datetime, timezone
from typing import Any, Optional

from ..constants import (
    FEW_DISTINCT_VALUES,
    HIGH_UNIQUENESS_PCT,
    LOW_COMPLETENESS_PCT,
    LOW_UNIQUENESS_PCT,
    MEDIUM_DATASET_MB,
    MEDIUM_DATASET_ROWS,
    SAMPLE_ROWS,
    SMALL_DATASET_MB,
    SMALL_DATASET_ROWS,
)
from ..models import QueryResult

RESULT_SEPARATOR = "=" * 80
ROW_SEPARATOR = "-" * 80


def to_json(data: Any) -> str:
    """Serialize rows and models for the caller; dates and decimals become strings."""
    return json.dumps(data, indent=2, default=str)


def format_query_result(result: QueryResult, query: str, database_name: str = "unknown") -> str:
    """Format a successful query result as plain text for AI consumption.

    Args:
        result: Successful query result
        query: The query that was executed (after the implicit LIMIT)
        database_name: Name of the registered database (for context)

    Returns:
        Header with separators followed by the rows as a JSON array
    """
    output = [
        RESULT_SEPARATOR,
        "DATABASE QUERY RESULTS",
        RESULT_SEPARATOR,
        f"Database: {database_name}",
        f"Query: {query}",
    ]

    if not result.rows:
        output.extend([
            "Result: No rows returned (empty result set)",
            RESULT_SEPARATOR,
            "",
        ])
        return "\n".join(output)

    output.extend([
        f"Rows returned: {result.row_count}",
        "Columns: " + ", ".join(f"{column.name} ({column.type})" for column in result.columns),
        ROW_SEPARATOR,
        to_json(result.rows),
        ROW_SEPARATOR,
        f"Total rows: {result.row_count}",
        RESULT_SEPARATOR,
        "",
    ])
    return "\n".join(output)


def _as_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _rows(results: dict[str, QueryResult], name: str) -> list[dict[str, Any]]:
    result = results.get(name)
    if result is None or not result.success:
        return []
    return result.rows


def _first_row(results: dict[str, QueryResult], name: str) -> Optional[dict[str, Any]]:
    rows = _rows(results, name)
    return rows[0] if rows else None


def _percent(part: Any, whole: Any) -> Optional[float]:
    part, whole = _as_float(part), _as_float(whole)
    if part is None or not whole:
        return None
    return part / whole * 100


def _column_sections(results: dict[str, QueryResult]) -> list[str]:
    lines: list[str] = []

    stats = _first_row(results, "basic_stats")
    if stats:
        uniqueness = _as_float(stats.get("uniqueness_ratio"))
        completeness = _percent(stats.get("non_null_count"), stats.get("total_count"))
        lines.extend([
            "BASIC STATISTICS",
            ROW_SEPARATOR,
            f"Total Records: {stats.get('total_count')}",
            f"Non-Null Records: {stats.get('non_null_count')}",
            f"Null Records: {stats.get('null_count')}",
            f"Distinct Values: {stats.get('distinct_count')}",
            f"Uniqueness Ratio: {uniqueness * 100:.2f}%" if uniqueness is not None else "Uniqueness Ratio: N/A",
            f"Data Completeness: {completeness:.2f}%" if completeness is not None else "Data Completeness: N/A",
            "",
        ])

    numeric = _first_row(results, "numeric_stats")
    if numeric and numeric.get("min_value") is not None:
        mean = _as_float(numeric.get("mean_value"))
        std_dev = _as_float(numeric.get("std_dev"))
        lines.extend([
            "NUMERIC ANALYSIS",
            ROW_SEPARATOR,
            f"Min Value: {numeric.get('min_value')}",
            f"Max Value: {numeric.get('max_value')}",
            f"Mean Value: {mean:.2f}" if mean is not None else "Mean Value: N/A",
            f"Standard Deviation: {std_dev:.2f}" if std_dev is not None else "Standard Deviation: N/A",
            "",
        ])

    strings = _first_row(results, "string_analysis")
    if strings and strings.get("min_length") is not None:
        avg_length = _as_float(strings.get("avg_length"))
        lines.extend([
            "STRING LENGTH ANALYSIS",
            ROW_SEPARATOR,
            f"Min Length: {strings.get('min_length')}",
            f"Max Length: {strings.get('max_length')}",
            f"Average Length: {avg_length:.2f}" if avg_length is not None else "Average Length: N/A",
            "",
        ])

    top_values = _rows(results, "top_values")
    if top_values:
        lines.extend(["TOP VALUES (Most Frequent)", ROW_SEPARATOR])
        for idx, row in enumerate(top_values, start=1):
            share = _as_float(row.get("percentage"))
            share_text = f"{share * 100:.2f}%" if share is not None else "N/A"
            lines.append(f'{idx:2d}. "{row.get("value")}" - {row.get("frequency")} occurrences ({share_text})')
        lines.append("")

    quality = _rows(results, "data_quality")
    if quality:
        lines.extend(["DATA QUALITY SUMMARY", ROW_SEPARATOR])
        for row in quality:
            lines.append(f"{row.get('data_status')}: {row.get('count')} records")
        lines.append("")

    lines.extend(["MODELING INSIGHTS", ROW_SEPARATOR])
    if stats:
        completeness = _percent(stats.get("non_null_count"), stats.get("total_count"))
        uniqueness = _as_float(stats.get("uniqueness_ratio"))
        distinct = _as_float(stats.get("distinct_count"))

        if completeness is not None and completeness < LOW_COMPLETENESS_PCT:
            lines.append(f"- High missing data ({100 - completeness:.1f}%): consider imputation strategies")
        if uniqueness is not None:
            if uniqueness * 100 > HIGH_UNIQUENESS_PCT:
                lines.append(f"- Very high cardinality ({uniqueness * 100:.1f}%): likely identifier column")
            elif uniqueness * 100 < LOW_UNIQUENESS_PCT:
                lines.append(f"- Low cardinality ({uniqueness * 100:.1f}%): categorical candidate")
        if distinct is not None and distinct < FEW_DISTINCT_VALUES:
            lines.append("- Few distinct values: suitable for categorical encoding")
    lines.append("")

    return lines


def _size_guidance(size_mb: float) -> str:
    if size_mb < SMALL_DATASET_MB:
        return "Small dataset: suitable for in-memory analysis"
    if size_mb < MEDIUM_DATASET_MB:
        return "Medium dataset: good for most analytics workloads"
    return "Large dataset: consider sampling for exploratory analysis"


def _row_guidance(total_rows: float) -> str:
    if total_rows < SMALL_DATASET_ROWS:
        return f"Small dataset ({total_rows:.0f} rows): ideal for detailed analysis"
    if total_rows < MEDIUM_DATASET_ROWS:
        return f"Medium dataset ({total_rows:.0f} rows): good for machine learning"
    return f"Large dataset ({total_rows:.0f} rows): consider feature sampling"


def _table_sections(results: dict[str, QueryResult]) -> list[str]:
    lines: list[str] = []

    overview = _first_row(results, "table_overview")
    if overview:
        lines.extend([
            "DATA OVERVIEW",
            ROW_SEPARATOR,
            f"Total Rows: {overview.get('total_rows')}",
            "",
        ])

    summary = _first_row(results, "table_data_summary")
    if summary:
        lines.extend(["DATA CHARACTERISTICS", ROW_SEPARATOR, f"Total Records: {summary.get('total_rows')}"])
        size_mb = _as_float(summary.get("size_mb"))
        if size_mb:
            lines.append(f"Estimated Size: {size_mb:g} MB")
            lines.append(_size_guidance(size_mb))
        else:
            lines.append("Estimated Size: unknown")
        lines.append("")

    statistics = _first_row(results, "table_statistics")
    if statistics:
        lines.extend([
            "TABLE STATISTICS",
            ROW_SEPARATOR,
            f"Table: {statistics.get('table_name')}",
            f"Columns: {statistics.get('column_count')}",
            f"Rows: {statistics.get('row_count')}",
            "",
        ])

    sample = _rows(results, "sample_data")
    if sample:
        lines.extend([f"SAMPLE DATA (First {SAMPLE_ROWS} rows)", ROW_SEPARATOR, to_json(sample), ""])

    if summary:
        lines.extend(["DATA INSIGHTS", ROW_SEPARATOR])
        total_rows = _as_float(summary.get("total_rows"))
        if total_rows is not None:
            lines.append(f"- {_row_guidance(total_rows)}")
        lines.append("- Use column-level profiling to analyze individual features")
        lines.append("- Schema details available via introspect_schema tool")
        lines.append("")

    return lines


def format_profiling_report(
    table: str,
    column: Optional[str],
    results: dict[str, QueryResult],
    engine: str,
) -> str:
    """Render profiling query results as an EDA report.

    Sections are only emitted for queries that succeeded and returned rows;
    failed queries are listed at the end instead of aborting the report.

    Args:
        table: Profiled table
        column: Profiled column, or None for a table-level report
        results: Query name to result, as produced by the adapter's profiling queries
        engine: Engine kind, shown in the header

    Returns:
        Plain text report with section separators
    """
    target = f"{table}.{column}" if column else f"{table} (Table)"
    output = [
        RESULT_SEPARATOR,
        f"EDA PROFILE REPORT: {target}",
        RESULT_SEPARATOR,
        f"Database Engine: {engine.upper()}",
        f"Generated: {datetime.now(timezone.utc).isoformat()}",
        "",
    ]

    output.extend(_column_sections(results) if column else _table_sections(results))

    errors = [(name, result.error) for name, result in results.items() if not result.success]
    if errors:
        output.extend(["QUERY ERRORS", ROW_SEPARATOR])
        for name, error in errors:
            output.append(f"{name}: {error}")
        output.append("")

    output.extend([RESULT_SEPARATOR, ""])
    return "\n".join(output)
