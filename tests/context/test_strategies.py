# tests/context/test_strategies.py
"""
Tests for the strategy table.

Covers:
- Default fallback for unknown task types
- Budget allocation with and without a total override
- Task description building
- Deterministic preprocessors
- Per-instance registration
"""

import pytest

from chuk_prompt_experiments.context import (
    DEFAULT_STRATEGIES,
    ContextStrategy,
    StrategyTable,
    StrategyType,
    TaskInstructions,
    TokenBudget,
)
from chuk_prompt_experiments.context.strategies import (
    append_source_metadata,
    mark_executive_terms,
    mark_timeline_terms,
)


class TestLookup:
    def test_known_types(self):
        table = StrategyTable()
        assert table.get_strategy("roadmap").name == "Roadmap Generation"
        assert table.get_strategy("qa").name == "Question Answering"

    @pytest.mark.parametrize("task_type", ["unknown", "", None, "ROADMAP"])
    def test_unknown_falls_back_to_default(self, task_type):
        assert StrategyTable().get_strategy(task_type).name == "Default Strategy"

    def test_all_strategy_types_present(self):
        table = StrategyTable()
        for task_type in StrategyType:
            assert task_type.value in table.list_task_types()


class TestBudgetAllocation:
    def test_roadmap_allocation(self):
        allocation = StrategyTable().get_budget_allocation("roadmap")
        assert allocation.total == 12000
        assert allocation.absolute["content"] == 7200
        assert allocation.absolute["task"] == 1200
        assert allocation.percentages["content"] == pytest.approx(0.60)
        assert sum(allocation.absolute.values()) <= 12000

    def test_content_heavy_vs_examples(self):
        table = StrategyTable()
        roadmap = table.get_budget_allocation("roadmap").percentages
        slides = table.get_budget_allocation("slides").percentages
        assert roadmap["content"] > slides["content"]
        assert roadmap["examples"] < slides["examples"]

    def test_total_override(self):
        allocation = StrategyTable().get_budget_allocation("roadmap", total_tokens_override=6000)
        assert allocation.total == 6000
        assert allocation.absolute["content"] == 3600

    def test_unknown_type_never_throws(self):
        allocation = StrategyTable().get_budget_allocation("nope", 5000)
        assert allocation.total == 5000
        assert sum(allocation.absolute.values()) <= 5000


class TestTaskDescription:
    def test_includes_focus_constraints_and_prompt(self):
        description = StrategyTable().build_task_description("roadmap", "Focus on Q3")
        assert "**Task Focus**: Extract timeline" in description
        assert "- Identify all dates and temporal references" in description
        assert "**Output Guidance**:" in description
        assert description.endswith("**Additional Instructions**:\nFocus on Q3")

    def test_default_has_no_constraints(self):
        description = StrategyTable().build_task_description("default")
        assert "**Constraints**" not in description
        assert description == "**Task Focus**: Process research content as requested"

    def test_get_task_instructions(self):
        instructions = StrategyTable().get_task_instructions("slides")
        assert instructions.format == "6-slide presentation structure"
        assert len(instructions.constraints) == 4


class TestPreprocessing:
    def test_timeline_marking(self):
        marked = mark_timeline_terms("Launch 01/15/2025, then Q2 2025 milestone and final deadline")
        assert "**DATE: 01/15/2025**" in marked
        assert "**QUARTER: Q2 2025**" in marked
        assert "**milestone**" in marked
        assert "**deadline**" in marked

    def test_executive_marking(self):
        marked = mark_executive_terms("Summary: revenue grew 45% to $1,200. We recommend expansion.")
        assert "**Summary**" in marked
        assert "**45%**" in marked
        assert "**$1,200**" in marked
        assert "**recommend**" in marked

    def test_source_metadata(self):
        text = "In 2023 and 2024, according to the report. Source: analyst notes."
        processed = append_source_metadata(text)
        assert processed.startswith(text)
        assert "- Year references found: 2" in processed
        assert "- Source citations found: 2" in processed

    def test_table_applies_by_task_type(self):
        table = StrategyTable()
        assert table.apply_preprocessing("Phase two", "roadmap") == "**Phase** two"
        assert table.apply_preprocessing("Phase two", "document") == "Phase two"
        assert table.apply_preprocessing("Phase two", "unknown") == "Phase two"

    def test_preprocessing_is_deterministic(self):
        table = StrategyTable()
        text = "Summary of 2024: 30% growth, $5,000 saved"
        assert table.apply_preprocessing(text, "slides") == table.apply_preprocessing(text, "slides")


class TestRegistration:
    def test_register_custom_strategy(self):
        table = StrategyTable()
        custom = ContextStrategy(
            name="Custom",
            budget=TokenBudget(total_tokens=2000, minimums={}),
            instructions=TaskInstructions(focus="Do the custom thing"),
            preprocess=str.upper,
        )
        table.register_strategy("custom", custom)

        assert table.get_strategy("custom").name == "Custom"
        assert table.apply_preprocessing("abc", "custom") == "ABC"
        assert table.get_budget_allocation("custom").total == 2000

    def test_registration_is_per_instance(self):
        table = StrategyTable()
        table.register_strategy(
            "custom",
            ContextStrategy(name="Custom", budget=TokenBudget(minimums={}), instructions=TaskInstructions(focus="x")),
        )
        assert "custom" not in DEFAULT_STRATEGIES
        assert StrategyTable().get_strategy("custom").name == "Default Strategy"
