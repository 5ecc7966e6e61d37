"""
Cost Extraction Service - parses supplier/cost lines out of free-text product
names and descriptions.

Shops keep purchase notes inside the POS description, one purchase per line:

    L $ 193 abril
    Rx $190
    ABC 03/15/2024 $12.50

Each line yields (supplier token, amount, optional month). Entries keep text
order and the last one is the default selection. Parsing never raises; a
description with nothing usable comes back empty with requires_manual_review.
"""
import calendar
import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Optional, Tuple

from stockbridge.config import settings
from stockbridge.schemas.cutover import CostExtractionResult, ExtractedCostEntry

logger = logging.getLogger(__name__)

CURRENCY_MARKERS = ("$", "💲")

# Lines that describe the product, not a purchase
_EXCLUSION_PATTERNS = [
    re.compile(r"^Fórmula:", re.IGNORECASE),
    re.compile(r"^Descripción:", re.IGNORECASE),
    re.compile(r"^Laboratorio:", re.IGNORECASE),
    re.compile(r"^Costo\s", re.IGNORECASE),
    re.compile(r"^\d+$"),
]

# First number after the currency marker; comma or dot decimal separator
_AMOUNT_PATTERN = re.compile(r"[\$💲]\s*(\d+[.,]?\d*)")

# MM/DD, MM/DD/YY, MM/DD/YYYY (DD/MM accepted when the first part cannot be a month)
_DATE_PATTERN = re.compile(r"\b(\d{1,2})[/-](\d{1,2})(?:[/-](\d{2,4}))?\b")

_MONTH_NAMES = {
    # Spanish
    "enero": 1, "ene": 1,
    "febrero": 2, "feb": 2,
    "marzo": 3, "mar": 3,
    "abril": 4, "abr": 4,
    "mayo": 5,
    "junio": 6, "jun": 6,
    "julio": 7, "jul": 7,
    "agosto": 8, "ago": 8,
    "septiembre": 9, "setiembre": 9, "sept": 9, "sep": 9,
    "octubre": 10, "oct": 10,
    "noviembre": 11, "nov": 11,
    "diciembre": 12, "dic": 12,
    # English
    "january": 1, "jan": 1,
    "february": 2,
    "march": 3,
    "april": 4, "apr": 4,
    "may": 5,
    "june": 6,
    "july": 7,
    "august": 8, "aug": 8,
    "september": 9,
    "october": 10,
    "november": 11,
    "december": 12, "dec": 12,
}

# Longest names first so "septiembre" wins over "sep"
_MONTH_PATTERN = re.compile(
    r"\b(" + "|".join(sorted(_MONTH_NAMES, key=len, reverse=True)) + r")\b\.?",
    re.IGNORECASE,
)

# Leading supplier token: short code ("L", "Rx") or a name of a few words
_SUPPLIER_PATTERN = re.compile(r"^([^\W\d_][\w\s'.&-]*)", re.UNICODE)
_MAX_SUPPLIER_LENGTH = 20

UNKNOWN_SUPPLIER = "Unknown"


class CostExtractionService:
    """Pure description parser; no database or network access"""

    @staticmethod
    def extract_cost_from_description(
        product_name: Optional[str],
        description: Optional[str] = None,
    ) -> CostExtractionResult:
        """
        Extract every cost entry from the product name and description.

        Returns:
            CostExtractionResult with entries in text order, selected_cost set to
            the last entry's amount, and requires_manual_review when there is
            nothing to pick from, more than one candidate, or a LOW-confidence
            entry.
        """
        result = CostExtractionResult()
        text = "\n".join(part for part in (product_name, description) if part and part.strip())
        if not text:
            result.extraction_errors.append("Product name is empty")
            result.requires_manual_review = True
            return result

        lines = [line.strip() for line in re.split(r"\r?\n", text)]
        lines = [line for line in lines if line]

        for line_number, line in enumerate(lines, start=1):
            try:
                entry = CostExtractionService._parse_line(line, line_number)
            except (ValueError, InvalidOperation) as e:
                # Malformed line: keep going with the rest of the text
                logger.debug(f"Skipping unparseable cost line {line!r}: {e}")
                continue
            if entry is not None:
                result.entries.append(entry)

        if not result.entries:
            result.requires_manual_review = True
            result.extraction_errors.append("No cost entries extracted from product name")
        elif len(result.entries) > 1:
            result.requires_manual_review = True
        elif result.entries[0].confidence == "LOW":
            result.requires_manual_review = True

        if result.entries:
            result.selected_cost = result.entries[-1].amount
        return result

    @staticmethod
    def _parse_line(line: str, line_number: int) -> Optional[ExtractedCostEntry]:
        if any(p.search(line) for p in _EXCLUSION_PATTERNS):
            return None

        marker_positions = [line.find(m) for m in CURRENCY_MARKERS if m in line]
        if not marker_positions:
            return None
        marker_index = min(marker_positions)

        amount_match = _AMOUNT_PATTERN.search(line)
        if not amount_match:
            return None
        amount = Decimal(amount_match.group(1).replace(",", "."))
        if amount < 0 or amount > Decimal(str(settings.MAX_EXTRACTED_AMOUNT)):
            return None

        # Dates and month names are searched outside the amount token
        rest = line[:amount_match.start()] + " " + line[amount_match.end():]
        month, day, year = CostExtractionService._parse_date(rest)

        supplier = CostExtractionService._parse_supplier(line[:marker_index])

        confidence = "HIGH"
        if month is None or supplier == UNKNOWN_SUPPLIER:
            confidence = "MEDIUM"
        if amount == 0:
            confidence = "LOW"

        return ExtractedCostEntry(
            supplier=supplier,
            amount=amount,
            month=month,
            month_name=calendar.month_name[month] if month else None,
            day=day,
            year=year,
            line_number=line_number,
            original_line=line,
            confidence=confidence,
        )

    @staticmethod
    def _parse_date(text: str) -> Tuple[Optional[int], Optional[int], Optional[int]]:
        """Return (month, day, year) from a numeric date or a month name."""
        for match in _DATE_PATTERN.finditer(text):
            first, second = int(match.group(1)), int(match.group(2))
            month, day = first, second
            if month > 12 and day <= 12:
                month, day = second, first
            if not (1 <= month <= 12 and 1 <= day <= 31):
                continue
            year = None
            if match.group(3):
                year = int(match.group(3))
                if year < 100:
                    year += 2000
            return month, day, year

        name_match = _MONTH_PATTERN.search(text)
        if name_match:
            return _MONTH_NAMES[name_match.group(1).lower()], None, None
        return None, None, None

    @staticmethod
    def _parse_supplier(before_marker: str) -> str:
        cleaned = _DATE_PATTERN.sub(" ", before_marker)
        cleaned = _MONTH_PATTERN.sub(" ", cleaned)
        cleaned = re.sub(r"\s+", " ", cleaned).strip(" -:")
        if not cleaned:
            return UNKNOWN_SUPPLIER
        match = _SUPPLIER_PATTERN.match(cleaned)
        if not match:
            return UNKNOWN_SUPPLIER
        supplier = match.group(1)[:_MAX_SUPPLIER_LENGTH].strip(" -.'")
        return supplier or UNKNOWN_SUPPLIER
