# tests/context/test_pipeline.py
"""
Tests for the end-to-end context pipeline.
"""

from chuk_prompt_experiments.context import ResearchFile


class TestProcess:
    def test_roadmap_prompt(self, pipeline):
        files = [ResearchFile(name="plan.md", text="The first milestone lands 03/01/2025.")]
        result = pipeline.process(files, "Focus on Q3", task_type="roadmap")

        assert result.strategy_name == "Roadmap Generation"
        assert result.prompt.startswith("**Task Focus**: Extract timeline")
        assert "User Instructions:\nFocus on Q3" in result.prompt
        # Research was preprocessed before assembly
        assert "**milestone**" in result.prompt
        assert "**DATE: 03/01/2025**" in result.prompt
        assert "## plan.md" in result.prompt

    def test_token_usage(self, pipeline):
        result = pipeline.process([{"name": "a", "text": "Some research"}], task_type="qa")
        usage = result.token_usage

        assert usage.budget == 4000
        assert usage.used == result.context.total_tokens
        assert usage.available == usage.budget - usage.used
        assert usage.utilization == result.context.budget_used
        assert result.processing_time_ms >= 0

    def test_budget_override(self, pipeline):
        result = pipeline.process([ResearchFile(name="a", text="x " * 5000)], task_type="document", token_budget=1500)
        assert result.token_usage.budget == 1500
        assert result.context.total_tokens <= 1500
        assert "content" in result.context.truncated_components

    def test_unknown_task_type_uses_default(self, pipeline):
        result = pipeline.process([ResearchFile(name="a", text="text")], task_type="poetry")
        assert result.strategy_name == "Default Strategy"
        assert result.prompt.startswith("**Task Focus**: Process research content as requested")

    def test_markers(self, pipeline):
        result = pipeline.process([ResearchFile(name="a", text="text")], include_markers=True)
        assert "<!-- task (" in result.prompt
        assert "<!-- content (" in result.prompt

    def test_no_files(self, pipeline):
        result = pipeline.process([], "Just answer", task_type="qa")
        assert result.context.get_component("content") is None
        assert result.context.file_count == 0
        assert "Just answer" in result.prompt
