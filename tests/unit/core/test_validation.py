"""Unit Tests for plan validation and plan parsing."""

from stepforce.core.domain.models import Plan
from stepforce.core.domain.validation import validate_plan


class TestPlanFromDict:
    """Tests for Plan.from_dict."""

    def test_accepts_bare_step_list_and_aliases(self):
        """Test default ids and field aliases."""
        plan = Plan.from_dict([{"tool_name": "echo", "args": {"a": 1}}, {"id": "custom", "tool": "sleep"}])
        assert [step.step_id for step in plan.steps] == ["step1", "custom"]
        assert plan.steps[0].tool == "echo"
        assert plan.steps[0].input == {"a": 1}

    def test_keeps_goal_and_plan_id(self):
        """Test top-level plan metadata."""
        plan = Plan.from_dict({"plan_id": "p1", "goal": "demo", "steps": []})
        assert plan.plan_id == "p1"
        assert plan.goal == "demo"

    def test_to_dict_round_trip(self):
        """Test that a serialized plan parses back to the same steps."""
        plan = Plan.from_dict([{"tool": "echo", "input": {"a": 1}, "when": "{{step0.ok}}", "requires_approval": True}])
        again = Plan.from_dict(plan.to_dict())
        assert again.plan_id == plan.plan_id
        assert again.steps == plan.steps


class TestValidatePlan:
    """Tests for validate_plan."""

    def test_valid_plan(self):
        """Test that backward references are fine."""
        plan = Plan.from_dict([{"tool": "echo"}, {"tool": "echo", "input": "{{step1.x}}"}])
        assert validate_plan(plan, ["echo"]) == []

    def test_empty_plan(self):
        """Test that a plan needs steps."""
        issues = validate_plan(Plan(steps=[]))
        assert issues[0].path == "steps"

    def test_duplicate_ids_and_unknown_tools(self):
        """Test id and tool checks."""
        plan = Plan.from_dict([{"id": "a", "tool": "echo"}, {"id": "a", "tool": "rm"}, {"id": "b"}])
        messages = [issue.message for issue in validate_plan(plan, ["echo"])]
        assert "Duplicate step id 'a'" in messages
        assert "Unknown tool 'rm'" in messages
        assert "Step has no tool" in messages

    def test_forward_and_missing_references(self):
        """Test references to later, own and nonexistent steps."""
        plan = Plan.from_dict(
            [
                {"tool": "echo", "input": {"q": "{{step2.x}}"}},
                {"tool": "echo", "input": "{{step2}}", "when": "{{step7.ok}}"},
            ]
        )
        issues = validate_plan(plan)
        paths = [issue.path for issue in issues]
        assert paths == ["steps[0].input", "steps[1].input", "steps[1].when"]
        assert "does not exist" in issues[2].message

    def test_non_contiguous_step_ids(self):
        """Test that {{stepN}} also matches a step named stepN at any position."""
        plan = Plan.from_dict(
            [
                {"id": "step1", "tool": "echo", "input": {"x": 1}},
                {"id": "step3", "tool": "echo", "input": {"y": 2}},
                {"id": "step5", "tool": "echo", "input": {"v": "{{step3.y}}", "w": "{{step1.x}}"}},
            ]
        )
        assert validate_plan(plan, ["echo"]) == []

    def test_named_step_that_runs_later_is_a_forward_reference(self):
        """Test a reference to a later step that is found only by its id."""
        plan = Plan.from_dict(
            [
                {"id": "step1", "tool": "echo", "input": {"v": "{{step9.y}}"}},
                {"id": "step9", "tool": "echo"},
            ]
        )
        issues = validate_plan(plan)
        assert len(issues) == 1
        assert "has not run yet" in issues[0].message
