"""
Shared test fixtures.

Database fixtures point settings at a temporary SQLite file; schema
fixtures build the small conditional form used across the suite.
"""

import pytest
import tempfile
from pathlib import Path
from unittest.mock import patch

from src.domain.models.form_schema import (
    ConditionGroup,
    FieldCondition,
    FieldOption,
    FormField,
    FormSchema,
    ValidationRule,
)
from src.persistence.database import init_database
from src.persistence.repositories.state_repo import StateRepository
from src.services.state_machine import AppStateMachine


@pytest.fixture
async def test_db():
    """Create and initialize test database."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        await init_database(db_path)

        from src.core import config

        original_path = config.settings.database_path
        config.settings.database_path = db_path

        with patch("src.persistence.database.settings", config.settings):
            yield db_path

        config.settings.database_path = original_path


@pytest.fixture
async def state_repo(test_db):
    """State repository on the test database."""
    return StateRepository(str(test_db))


@pytest.fixture
def machine():
    """In-memory state machine (no repository)."""
    return AppStateMachine()


@pytest.fixture
async def persistent_machine(state_repo):
    """State machine writing through the test repository."""
    machine = AppStateMachine(repository=state_repo)
    await machine.hydrate()
    return machine


@pytest.fixture
def vendor_schema() -> FormSchema:
    """Five-field form: a radio that gates a required text field, a
    multiselect, a number with bounds and an email."""
    return FormSchema(
        title="CRM vendor research",
        research_topic="CRM vendors for a 20-person sales team",
        fields=[
            FormField(
                id="has_budget",
                type="radio",
                label="Do you have a budget?",
                required=True,
                options=[
                    FieldOption(value="yes", label="Yes"),
                    FieldOption(value="no", label="No"),
                ],
                order=0,
            ),
            FormField(
                id="budget_range",
                type="text",
                label="Budget range",
                required=True,
                visibility_conditions=ConditionGroup(
                    operator="AND",
                    conditions=[
                        FieldCondition(field_id="has_budget", operator="equals", value="yes")
                    ],
                ),
                depends_on=["has_budget"],
                order=1,
            ),
            FormField(
                id="features",
                type="multiselect",
                label="Must-have features",
                options=[
                    FieldOption(value="email_sync", label="Email sync"),
                    FieldOption(value="reporting", label="Reporting"),
                ],
                order=2,
            ),
            FormField(
                id="seats",
                type="number",
                label="Seats",
                validation_rules=[
                    ValidationRule(type="min", value=1, message="At least one seat"),
                    ValidationRule(type="max", value=500, message="At most 500 seats"),
                ],
                order=3,
            ),
            FormField(
                id="contact",
                type="email",
                label="Contact email",
                order=4,
            ),
        ],
    )


def make_form_message(fields: list, topic: str = "Project management tools") -> str:
    """Assistant message embedding a generate_form payload."""
    import json

    payload = {
        "action": "generate_form",
        "form": {
            "title": f"{topic} research",
            "description": "Tell us what you need",
            "researchTopic": topic,
            "fields": fields,
        },
    }
    return (
        "Thanks, I have enough to build your form.\n\n"
        f"```json\n{json.dumps(payload, indent=2)}\n```\n"
        "Review it and let me know."
    )


@pytest.fixture
def form_message():
    """Assistant message with a two-field showOnlyIf form."""
    return make_form_message(
        [
            {
                "id": "team_size",
                "type": "select",
                "label": "Team size",
                "required": True,
                "options": ["Under 10", "10 to 50", "Over 50"],
            },
            {
                "id": "sso",
                "type": "checkbox",
                "label": "Need single sign-on?",
                "showOnlyIf": {
                    "dependsOnField": "team_size",
                    "condition": "equals",
                    "value": "over_50",
                },
            },
        ]
    )


@pytest.fixture
def form_message_factory():
    """Builder for assistant messages carrying arbitrary fields."""
    return make_form_message
