"""Tests for the audit checklist."""

from taxguard.models.security.audit_checklist import (
    CATEGORIES,
    DEFAULT_CHECKLIST,
    SEVERITY_WEIGHTS,
    ChecklistItem,
    render_checklist,
    run_checklist,
)


class TestChecklistDefinition:
    """Test suite for the default checklist items."""

    def test_forty_unique_items(self):
        ids = [item.id for item in DEFAULT_CHECKLIST]

        assert len(DEFAULT_CHECKLIST) == 40
        assert len(set(ids)) == 40

    def test_items_use_known_categories_and_severities(self):
        for item in DEFAULT_CHECKLIST:
            assert item.category in CATEGORIES
            assert item.severity in SEVERITY_WEIGHTS
            assert item.regex.pattern == item.pattern

    def test_to_dict_is_serializable(self):
        data = DEFAULT_CHECKLIST[0].to_dict()

        assert data["id"] == "TAX-01"
        assert set(data) >= {"id", "category", "title", "severity", "guidance"}


class TestRunChecklist:
    """Test suite for run_checklist."""

    def test_hits_report_line_numbers_and_functions(self, honey_source):
        report = run_checklist(honey_source)
        hits = {(hit.item.id, hit.line_number): hit for hit in report.hits}

        assert ("TAX-11", 24) in hits
        assert ("TAX-12", 24) in hits
        assert ("TAX-02", 28) in hits
        owner_credit = hits[("TAX-33", 37)]
        assert owner_credit.function == "_transfer"
        assert owner_credit.snippet == "_balances[_owner] += fee;"

    def test_comments_do_not_match(self, honey_source):
        report = run_checklist(honey_source)

        assert all(hit.line_number != 23 for hit in report.hits)

    def test_hits_are_sorted_by_line(self, honey_source):
        lines = [hit.line_number for hit in run_checklist(honey_source).hits]

        assert lines == sorted(lines)

    def test_plain_token_has_no_high_findings(self, plain_source):
        report = run_checklist(plain_source)
        severities = report.by_severity()

        assert severities["high"] == 0
        assert severities["critical"] == 0
        assert report.items_checked == 40

    def test_severity_score_counts_distinct_items(self, honey_source):
        report = run_checklist(honey_source)
        expected = sum(SEVERITY_WEIGHTS[item.severity] for item in report.matched_items)

        assert report.severity_score() == expected
        assert report.severity_score() >= SEVERITY_WEIGHTS["critical"]

    def test_custom_items(self):
        item = ChecklistItem("X-1", "fee_logic", "Cooldown", r"\bcooldown\b", "low", "check it",
                             ignore_case=True)
        report = run_checklist("contract A {\n uint256 Cooldown = 1;\n}", items=[item])

        assert len(report.hits) == 1
        assert report.hits[0].line_number == 2
        assert report.items_checked == 1

    def test_to_dict_summary(self, honey_source):
        data = run_checklist(honey_source).to_dict()

        assert data["items_checked"] == 40
        assert data["items_matched"] == len({hit["id"] for hit in data["hits"]})


class TestRenderChecklist:
    """Test suite for render_checklist."""

    def test_no_hits_message(self):
        text = render_checklist(run_checklist("contract A {}"))

        assert text == "No checklist items matched (40 checked)."

    def test_grouped_listing(self, honey_source):
        text = render_checklist(run_checklist(honey_source))

        assert "[fee_control]" in text
        assert "TAX-33" in text
        assert "line 37 in _transfer()" in text
