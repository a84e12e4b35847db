"""Tests for generate_form payload parsing."""

import pytest

from src.core.exceptions import FormPayloadError
from src.domain.models.form_schema import ConditionGroup, FieldCondition, FieldType
from src.services.form_payload_parser import (
    condition_group_from_show_only_if,
    extract_form_payload,
    parse_form_from_message,
    parse_form_payload,
)


class TestExtractPayload:
    def test_fenced_block(self, form_message):
        payload = extract_form_payload(form_message)
        assert payload["action"] == "generate_form"
        assert len(payload["form"]["fields"]) == 2

    def test_bare_json(self):
        content = 'Here you go: {"action": "generate_form", "form": {"title": "T", "fields": []}}'
        assert extract_form_payload(content)["form"]["title"] == "T"

    def test_other_json_is_ignored(self):
        assert extract_form_payload('```json\n{"action": "something_else", "form": {}}\n```') is None
        assert extract_form_payload("No form here, just chat.") is None

    def test_broken_json_is_ignored(self):
        assert extract_form_payload('```json\n{"action": "generate_form", \n```') is None


class TestParseMessage:
    def test_show_only_if_is_normalized(self, form_message):
        schema = parse_form_from_message(form_message)
        sso = schema.get_field("sso")

        assert sso.depends_on == ["team_size"]
        assert sso.visibility_conditions.operator == "AND"
        condition = sso.visibility_conditions.conditions[0]
        assert isinstance(condition, FieldCondition)
        assert condition.field_id == "team_size"
        assert condition.value == "over_50"

    def test_string_options_are_normalized(self, form_message):
        schema = parse_form_from_message(form_message)
        options = schema.get_field("team_size").options
        assert [o.value for o in options] == ["under_10", "10_to_50", "over_50"]
        assert options[0].label == "Under 10"

    def test_topic_and_order(self, form_message):
        schema = parse_form_from_message(form_message)
        assert schema.research_topic == "Project management tools"
        assert [f.order for f in schema.fields] == [0, 1]

    def test_message_without_payload(self):
        assert parse_form_from_message("What is your budget?") is None

    def test_unknown_type_falls_back_to_text(self, form_message_factory):
        schema = parse_form_from_message(
            form_message_factory([{"id": "mood", "type": "slider", "label": "Mood"}])
        )
        assert schema.get_field("mood").type == FieldType.TEXT

    def test_field_id_spelling_variants(self, form_message_factory):
        schema = parse_form_from_message(
            form_message_factory([{"fieldId": "seats", "fieldType": "number", "label": "Seats"}])
        )
        assert schema.get_field("seats").type == FieldType.NUMBER

    def test_malformed_conditions_quarantine_the_field(self, form_message_factory):
        schema = parse_form_from_message(
            form_message_factory(
                [
                    {"id": "a", "type": "text", "label": "A"},
                    {
                        "id": "b",
                        "type": "text",
                        "label": "B",
                        "visibilityConditions": {"operator": "XOR", "conditions": "nope"},
                        "dependsOn": ["a"],
                    },
                ]
            )
        )
        b = schema.get_field("b")
        assert b.schema_error == "malformed visibility conditions"
        assert b.visibility_conditions is None
        assert schema.get_field("a").schema_error is None

    def test_cycle_in_payload_is_quarantined(self, form_message_factory):
        schema = parse_form_from_message(
            form_message_factory(
                [
                    {"id": "a", "label": "A", "dependsOn": ["b"]},
                    {"id": "b", "label": "B", "dependsOn": ["a"]},
                ]
            )
        )
        assert all(f.schema_error for f in schema.fields)

    def test_non_list_options_quarantine_the_field(self, form_message_factory):
        schema = parse_form_from_message(
            form_message_factory([{"id": "plan", "type": "select", "label": "Plan", "options": 5}])
        )
        plan = schema.get_field("plan")
        assert plan.options is None
        assert plan.schema_error == "malformed options"

    def test_non_string_option_labels(self, form_message_factory):
        schema = parse_form_from_message(
            form_message_factory(
                [
                    {
                        "id": "seats",
                        "type": "radio",
                        "label": "Seats",
                        "options": [{"label": 5}, {"label": {"x": 1}}, "Over 50"],
                    }
                ]
            )
        )
        seats = schema.get_field("seats")
        assert [(o.value, o.label) for o in seats.options] == [("5", "5"), ("over_50", "Over 50")]
        assert seats.schema_error == "malformed options"

    def test_invalid_rules_and_order_keep_the_form(self, form_message_factory):
        schema = parse_form_from_message(
            form_message_factory(
                [
                    {"id": "a", "label": "A"},
                    {
                        "id": "b",
                        "type": "number",
                        "label": "B",
                        "validationRules": [{"type": "minLength", "value": 3}],
                    },
                    {"id": "c", "label": "C", "order": None},
                ]
            )
        )
        assert [f.id for f in schema.fields] == ["a", "b", "c"]
        b = schema.get_field("b")
        assert b.type == FieldType.NUMBER
        assert b.validation_rules is None
        assert b.schema_error == "invalid field definition"
        c = schema.get_field("c")
        assert c.order == 2
        assert c.schema_error == "invalid field definition"
        assert schema.get_field("a").schema_error is None


class TestParsePayloadErrors:
    def test_field_without_id(self):
        with pytest.raises(FormPayloadError):
            parse_form_payload({"action": "generate_form", "form": {"fields": [{"label": "x"}]}})

    def test_fields_not_a_list(self):
        with pytest.raises(FormPayloadError):
            parse_form_payload({"action": "generate_form", "form": {"fields": "a,b"}})

    def test_duplicate_ids(self):
        payload = {
            "action": "generate_form",
            "form": {"title": "T", "fields": [{"id": "a", "label": "A"}, {"id": "a", "label": "B"}]},
        }
        with pytest.raises(FormPayloadError):
            parse_form_payload(payload)

    def test_wrong_action(self):
        with pytest.raises(FormPayloadError):
            parse_form_payload({"action": "show_results", "form": {}})


def test_condition_group_from_show_only_if_defaults_to_equals():
    group = condition_group_from_show_only_if({"dependsOnField": "plan", "value": "pro"})
    assert isinstance(group, ConditionGroup)
    assert group.conditions[0].operator == "equals"
    assert group.conditions[0].field_id == "plan"
