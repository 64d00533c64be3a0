"""Cobertura XML coverage report parser.

Coverlet (``dotnet test --collect "XPlat Code Coverage"``) writes Cobertura
XML. This module turns one such report into a ``CoverageReport`` with
summary totals, per-file line/branch detail and per-method statistics.

Attribute-level problems never abort parsing: unparsable numbers default to
zero, malformed condition strings produce a plain line. Only a document that
cannot be read or has no ``<coverage>`` root yields ``None``.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from defusedxml import DefusedXmlException, ElementTree
from defusedxml.ElementTree import ParseError as DefusedParseError

from covwatch.adapters.coverage.aggregate import (
    MethodLines,
    build_file_coverage,
    parse_condition_coverage,
)
from covwatch.models.coverage import (
    CoverageReport,
    CoverageSummary,
    FileCoverage,
    LineRecord,
)

if TYPE_CHECKING:
    from pathlib import Path
    from xml.etree.ElementTree import Element as XmlElement

logger = logging.getLogger(__name__)


def _int_attr(element: XmlElement, key: str, default: int = 0) -> int:
    value = element.get(key)
    if value is None:
        return default
    try:
        return int(value.strip())
    except ValueError:
        return default


def _float_attr(element: XmlElement, key: str, default: float = 0.0) -> float:
    value = element.get(key)
    if value is None:
        return default
    try:
        return float(value.strip())
    except ValueError:
        return default


def _local_name(elem: XmlElement) -> str:
    return elem.tag.split("}")[-1] if "}" in elem.tag else elem.tag


def _children(elem: XmlElement, tag: str) -> list[XmlElement]:
    return [child for child in elem if _local_name(child) == tag]


def _grandchildren(elem: XmlElement, container: str, tag: str) -> list[XmlElement]:
    """Return ``elem/container/tag`` elements, e.g. ``class/lines/line``."""
    found: list[XmlElement] = []
    for group in _children(elem, container):
        found.extend(_children(group, tag))
    return found


def _parse_line(line_elem: XmlElement) -> LineRecord | None:
    """Parse one ``<line>`` element, or return None if it has no usable number."""
    number = _int_attr(line_elem, "number")
    if number <= 0:
        logger.debug("Skipping <line> without a valid number: %r", line_elem.get("number"))
        return None

    hits = max(_int_attr(line_elem, "hits"), 0)
    condition = (line_elem.get("condition-coverage") or "").strip()
    if not condition:
        return LineRecord(number=number, hits=hits)

    branch = parse_condition_coverage(condition)
    if branch is None:
        logger.debug("Line %d: unrecognised condition-coverage %r", number, condition)
    return LineRecord(number=number, hits=hits, is_branch=True, branch=branch)


def _parse_method(method_elem: XmlElement) -> MethodLines:
    method = MethodLines(
        name=method_elem.get("name", ""),
        signature=method_elem.get("signature", ""),
        line_rate=_float_attr(method_elem, "line-rate"),
        complexity=_int_attr(method_elem, "complexity"),
    )
    for line_elem in _grandchildren(method_elem, "lines", "line"):
        number = _int_attr(line_elem, "number")
        if number > 0:
            method.line_numbers.append(number)
    return method


class _FileAccumulator:
    """Lines and methods gathered for one filename across ``<class>`` elements."""

    def __init__(self) -> None:
        self.lines: list[LineRecord] = []
        self.methods: list[MethodLines] = []


def _process_class_element(
    class_elem: XmlElement,
    files: dict[str, _FileAccumulator],
) -> None:
    """Parse one Cobertura ``<class>`` element and merge it into *files*."""
    filename = (class_elem.get("filename") or "").strip()
    if not filename:
        logger.debug("Skipping <class %s> without a filename", class_elem.get("name", "?"))
        return

    methods = [_parse_method(m) for m in _grandchildren(class_elem, "methods", "method")]

    line_elems = _grandchildren(class_elem, "lines", "line")
    if not line_elems and not _children(class_elem, "lines"):
        # Some writers only nest lines under methods.
        for method_elem in _grandchildren(class_elem, "methods", "method"):
            line_elems.extend(_grandchildren(method_elem, "lines", "line"))

    acc = files.setdefault(filename, _FileAccumulator())
    acc.methods.extend(methods)
    for line_elem in line_elems:
        record = _parse_line(line_elem)
        if record is not None:
            acc.lines.append(record)


def _parse_summary(root: XmlElement) -> CoverageSummary:
    return CoverageSummary(
        line_coverage=_float_attr(root, "line-rate") * 100.0,
        branch_coverage=_float_attr(root, "branch-rate") * 100.0,
        covered_lines=_int_attr(root, "lines-covered"),
        total_lines=_int_attr(root, "lines-valid"),
        covered_branches=_int_attr(root, "branches-covered"),
        total_branches=_int_attr(root, "branches-valid"),
    )


def parse_cobertura_root(root: XmlElement, *, run_id: str = "") -> CoverageReport | None:
    """Build a ``CoverageReport`` from an already parsed ``<coverage>`` element."""
    if _local_name(root) != "coverage":
        logger.error("Cobertura XML root is not <coverage>: %s", root.tag)
        return None

    files: dict[str, _FileAccumulator] = {}
    for class_elem in root.iter():
        if _local_name(class_elem) == "class":
            _process_class_element(class_elem, files)

    file_coverages: list[FileCoverage] = []
    for path, acc in files.items():
        if not acc.lines:
            logger.debug("Excluding %s: no line entries", path)
            continue
        file_coverages.append(build_file_coverage(path, acc.lines, acc.methods))

    return CoverageReport(
        timestamp=datetime.now(UTC),
        run_id=run_id,
        summary=_parse_summary(root),
        files=tuple(file_coverages),
    )


def parse_cobertura_file(coverage_file: Path, *, run_id: str = "") -> CoverageReport | None:
    """Parse a Cobertura XML report file.

    Args:
        coverage_file: Path to ``coverage.cobertura.xml``.
        run_id: Test run identifier to stamp on the report.

    Returns:
        The parsed report, or None if the file cannot be read or parsed.
    """
    try:
        tree = ElementTree.parse(coverage_file)
    except (DefusedParseError, DefusedXmlException, OSError) as e:
        logger.error("Failed to parse Cobertura XML %s: %s", coverage_file, e)
        return None

    root = tree.getroot()
    if root is None:
        logger.error("Cobertura XML %s has no root element", coverage_file)
        return None
    return parse_cobertura_root(root, run_id=run_id)


def parse_cobertura_string(content: str, *, run_id: str = "") -> CoverageReport | None:
    """Parse Cobertura XML held in memory."""
    try:
        root = ElementTree.fromstring(content)
    except (DefusedParseError, DefusedXmlException) as e:
        logger.error("Failed to parse Cobertura XML: %s", e)
        return None
    return parse_cobertura_root(root, run_id=run_id)
