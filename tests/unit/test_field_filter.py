"""Tests for the monitored/ignored field filter."""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from src.approvals.hooks.registry import HookRegistry
from src.approvals.services.validator import WorkflowValidator, changed_fields, flatten
from tests.factories import WorkflowFactory

pytestmark = pytest.mark.unit


@pytest.fixture
def validator() -> WorkflowValidator:
    # The field filter never touches the session
    return WorkflowValidator(session=None, hooks=HookRegistry())  # type: ignore[arg-type]


class TestChangedFields:
    def test_flatten_nested_mappings(self) -> None:
        """Nested mappings should flatten into dotted keys."""
        assert flatten({"a": {"b": 1, "c": {"d": 2}}, "e": 3}) == {"a.b": 1, "a.c.d": 2, "e": 3}

    def test_only_differing_keys_reported(self) -> None:
        """Unchanged values should not count as changes."""
        original = {"title": "Old", "meta": {"seo": "x", "lang": "en"}}
        changes = {"title": "New", "meta": {"seo": "x", "lang": "de"}}
        assert changed_fields(original, changes) == {"title", "meta.lang"}

    def test_new_keys_are_changes(self) -> None:
        """Keys absent from the original should count as changed."""
        assert changed_fields({}, {"title": "New"}) == {"title"}

    def test_empty_collections_read_as_null(self) -> None:
        """Clearing an already empty list or map should not count as a change."""
        assert flatten({"tags": [], "meta": {}}) == {"tags": None, "meta": None}
        assert changed_fields({"tags": []}, {"tags": None}) == set()
        assert changed_fields({"tags": None}, {"tags": []}) == set()
        assert changed_fields({}, {"tags": []}) == set()
        assert changed_fields({"tags": []}, {"tags": ["news"]}) == {"tags"}


class TestShouldTriggerForFields:
    def test_no_change_means_no_trigger(self, validator: WorkflowValidator) -> None:
        """Identical data should not need approval."""
        workflow = WorkflowFactory.build()
        assert not validator.should_trigger_for_fields(workflow, {"title": "A"}, {"title": "A"})

    def test_monitored_fields_require_intersection(self, validator: WorkflowValidator) -> None:
        """With monitored fields, only changes to them trigger."""
        workflow = WorkflowFactory.build(monitored_fields=["title", "address"])

        assert validator.should_trigger_for_fields(workflow, {"title": "A"}, {"title": "B"})
        assert validator.should_trigger_for_fields(
            workflow, {"address": {"city": "X"}}, {"address": {"city": "Y"}}
        )
        assert not validator.should_trigger_for_fields(workflow, {"body": "A"}, {"body": "B"})

    def test_ignored_fields_require_change_outside(self, validator: WorkflowValidator) -> None:
        """With ignored fields, a change outside them is needed to trigger."""
        workflow = WorkflowFactory.build(ignored_fields=["updated_at", "views"])

        assert not validator.should_trigger_for_fields(workflow, {"views": 1}, {"views": 2})
        assert validator.should_trigger_for_fields(
            workflow, {"views": 1, "title": "A"}, {"views": 2, "title": "B"}
        )

    def test_emptied_empty_list_does_not_trigger(self, validator: WorkflowValidator) -> None:
        """Setting an empty tag list to null should not need approval."""
        workflow = WorkflowFactory.build(monitored_fields=["tags"])
        assert not validator.should_trigger_for_fields(workflow, {"tags": []}, {"tags": None})

    def test_without_filters_any_change_triggers(self, validator: WorkflowValidator) -> None:
        """A workflow without filters should trigger on any change."""
        workflow = WorkflowFactory.build()
        assert validator.should_trigger_for_fields(workflow, {"body": "A"}, {"body": "B"})


@given(data=st.dictionaries(st.text(min_size=1, max_size=5), st.integers(), max_size=5))
def test_identical_data_never_changes(data: dict[str, int]) -> None:
    """A map compared with itself should have no changed fields."""
    assert changed_fields(data, dict(data)) == set()
