"""
Unit Tests - Description cost extraction
"""
from decimal import Decimal

from stockbridge.services.cost_extraction_service import CostExtractionService


class TestCostExtraction:
    """Tests for CostExtractionService.extract_cost_from_description"""

    def test_single_line_with_month_name(self):
        """Supplier initial, amount and Spanish month on one line"""
        result = CostExtractionService.extract_cost_from_description("Paracetamol 500mg", "L $ 193 abril")

        assert len(result.entries) == 1
        entry = result.entries[0]
        assert entry.supplier == "L"
        assert entry.amount == Decimal("193")
        assert entry.month == 4
        assert entry.confidence == "HIGH"
        assert result.selected_cost == Decimal("193")
        assert result.requires_manual_review is False

    def test_numeric_date_and_last_entry_selected(self):
        """Entries keep text order and the last one is the default selection"""
        result = CostExtractionService.extract_cost_from_description("ABC 03/15/2024 $12.50\nXYZ $15.00")

        assert [e.supplier for e in result.entries] == ["ABC", "XYZ"]
        assert result.entries[0].amount == Decimal("12.50")
        assert result.entries[0].month == 3
        assert result.entries[0].month_name == "March"
        assert result.entries[0].day == 15
        assert result.entries[0].year == 2024
        assert result.entries[1].amount == Decimal("15.00")
        assert result.entries[1].month is None
        assert result.selected_cost == Decimal("15.00")
        assert result.requires_manual_review is True

    def test_missing_month_is_medium_confidence(self):
        """No month on the line lowers confidence"""
        result = CostExtractionService.extract_cost_from_description("Rx $190")

        assert result.entries[0].supplier == "Rx"
        assert result.entries[0].confidence == "MEDIUM"

    def test_missing_supplier_is_unknown(self):
        """A line starting with the currency marker has no supplier"""
        result = CostExtractionService.extract_cost_from_description("Producto", "$ 45 marzo")

        assert result.entries[0].supplier == "Unknown"
        assert result.entries[0].confidence == "MEDIUM"

    def test_comma_decimal_separator(self):
        """Comma is read as the decimal separator"""
        result = CostExtractionService.extract_cost_from_description("L $12,75 enero")

        assert result.entries[0].amount == Decimal("12.75")

    def test_emoji_currency_marker(self):
        """The 💲 marker works like $"""
        result = CostExtractionService.extract_cost_from_description("Rx 💲80 mayo")

        assert result.entries[0].supplier == "Rx"
        assert result.entries[0].amount == Decimal("80")
        assert result.entries[0].month == 5

    def test_excluded_lines_are_ignored(self):
        """Formula, lab and 'Costo' lines describe the product, not a purchase"""
        description = "Fórmula: $ 12\nLaboratorio: Bayer $ 5\nCosto $ 99\n12345\nL $ 20 junio"
        result = CostExtractionService.extract_cost_from_description("Aspirina", description)

        assert len(result.entries) == 1
        assert result.entries[0].amount == Decimal("20")

    def test_amount_over_limit_rejected(self):
        """Amounts above the configured maximum are not costs"""
        result = CostExtractionService.extract_cost_from_description("L $ 25000 enero")

        assert result.entries == []
        assert result.requires_manual_review is True

    def test_zero_amount_is_low_confidence(self):
        """A zero cost is kept but flagged for review"""
        result = CostExtractionService.extract_cost_from_description("L $0 enero")

        assert result.entries[0].confidence == "LOW"
        assert result.requires_manual_review is True

    def test_long_supplier_name_truncated(self):
        """Supplier names are cut to 20 characters"""
        result = CostExtractionService.extract_cost_from_description("Distribuidora Farmaceutica Central $ 30")

        assert len(result.entries[0].supplier) <= 20
        assert result.entries[0].supplier.startswith("Distribuidora")

    def test_empty_text(self):
        """Empty input never raises"""
        result = CostExtractionService.extract_cost_from_description("", None)

        assert result.entries == []
        assert result.extraction_errors == ["Product name is empty"]
        assert result.requires_manual_review is True

    def test_text_without_costs(self):
        """Plain product text yields no entries and an explanation"""
        result = CostExtractionService.extract_cost_from_description("Ibuprofeno 400mg", "Caja con 10 tabletas")

        assert result.entries == []
        assert "No cost entries extracted from product name" in result.extraction_errors
        assert result.selected_cost is None
