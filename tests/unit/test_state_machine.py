"""Tests for AppStateMachine: transitions, sessions and persistence."""

import pytest

from src.core.config import WorkflowConfig
from src.core.exceptions import StorageError
from src.domain.models.app_state import (
    AppState,
    ChatRole,
    PersistedAppState,
    TransitionTrigger,
)
from src.domain.models.form_schema import FormSchema
from src.domain.models.research import ResearchResult
from src.services.state_machine import (
    INVALID_TRANSITION,
    SESSION_NOT_FOUND,
    TRANSITION_GUARD_FAILED,
    TRANSITIONS,
    AppStateMachine,
)

PATH_TO = {
    AppState.INTERVIEWING: [],
    AppState.FORM_PREVIEW: [(AppState.FORM_PREVIEW, "view_form")],
    AppState.FORM_ACTIVE: [
        (AppState.FORM_PREVIEW, "view_form"),
        (AppState.FORM_ACTIVE, "confirm_form"),
    ],
    AppState.RESEARCHING: [
        (AppState.FORM_PREVIEW, "view_form"),
        (AppState.FORM_ACTIVE, "confirm_form"),
        (AppState.RESEARCHING, "form_submitted"),
    ],
    AppState.PRESENTING: [
        (AppState.FORM_PREVIEW, "view_form"),
        (AppState.FORM_ACTIVE, "confirm_form"),
        (AppState.RESEARCHING, "form_submitted"),
        (AppState.PRESENTING, "research_complete"),
    ],
}


def drive_to(machine: AppStateMachine, state: AppState) -> None:
    for target, trigger in PATH_TO[state]:
        assert machine.transition(target, trigger), (target, trigger)


@pytest.fixture
def ready_machine(machine, vendor_schema):
    machine.set_form_schema(vendor_schema)
    return machine


class TestTransitions:
    def test_view_form_appends_log_entry(self, ready_machine):
        assert ready_machine.transition(AppState.FORM_PREVIEW, TransitionTrigger.VIEW_FORM)

        assert ready_machine.current_state == AppState.FORM_PREVIEW
        assert ready_machine.previous_state == AppState.INTERVIEWING
        assert ready_machine.state_history == [AppState.INTERVIEWING, AppState.FORM_PREVIEW]
        entry = ready_machine.transition_logs[-1]
        assert entry.from_state == AppState.INTERVIEWING
        assert entry.to_state == AppState.FORM_PREVIEW
        assert entry.trigger == "view_form"

    def test_log_serializes_with_wire_keys(self, ready_machine):
        ready_machine.transition("FORM_PREVIEW", "view_form")
        dumped = ready_machine.transition_logs[0].model_dump(mode="json", by_alias=True)
        assert dumped["from"] == "INTERVIEWING"
        assert dumped["to"] == "FORM_PREVIEW"

    @pytest.mark.parametrize("state", list(AppState))
    @pytest.mark.parametrize(
        "trigger",
        [
            t
            for t in TransitionTrigger
            if t not in (TransitionTrigger.RESET, TransitionTrigger.GO_BACK)
        ],
    )
    def test_only_table_pairs_are_accepted(self, ready_machine, state, trigger):
        drive_to(ready_machine, state)
        expected = TRANSITIONS.get((state, trigger))

        for target in AppState:
            if target == expected:
                continue
            logs_before = len(ready_machine.transition_logs)
            assert not ready_machine.transition(target, trigger)
            assert ready_machine.current_state == state
            assert len(ready_machine.transition_logs) == logs_before
            assert ready_machine.error.code == INVALID_TRANSITION
            assert ready_machine.error.recoverable

        if expected is not None:
            assert ready_machine.transition(expected, trigger)
            assert ready_machine.current_state == expected
            assert ready_machine.error is None

    def test_unknown_trigger_is_rejected(self, ready_machine):
        assert not ready_machine.transition("FORM_PREVIEW", "teleport")
        assert ready_machine.error.code == INVALID_TRANSITION
        assert ready_machine.can_transition("teleport") is None

    def test_view_form_needs_a_schema(self, machine):
        assert machine.can_transition("view_form") is None
        assert not machine.transition(AppState.FORM_PREVIEW, "view_form")
        assert machine.error.code == TRANSITION_GUARD_FAILED
        assert machine.current_state == AppState.INTERVIEWING

    def test_view_form_needs_fields(self, machine):
        machine.set_form_schema(FormSchema(title="Empty"))
        assert not machine.transition(AppState.FORM_PREVIEW, "view_form")
        assert machine.error.code == TRANSITION_GUARD_FAILED

    def test_successful_transition_clears_error(self, ready_machine):
        ready_machine.transition(AppState.RESEARCHING, "form_submitted")
        assert ready_machine.error is not None
        ready_machine.transition(AppState.FORM_PREVIEW, "view_form")
        assert ready_machine.error is None

    def test_reset_from_any_state(self, ready_machine):
        drive_to(ready_machine, AppState.PRESENTING)
        ready_machine.add_chat_message("user", "CRM for sales")

        assert ready_machine.transition(AppState.INTERVIEWING, "reset")

        assert ready_machine.current_state == AppState.INTERVIEWING
        assert ready_machine.state_history == [AppState.INTERVIEWING]
        assert ready_machine.form_schema is None
        assert ready_machine.form_data == {}
        assert ready_machine.research_results is None
        assert ready_machine.research_progress == 0
        assert len(ready_machine.chat_messages) == 1
        assert ready_machine.transition_logs[-1].trigger == "reset"

    def test_reset_must_target_interviewing(self, ready_machine):
        drive_to(ready_machine, AppState.FORM_ACTIVE)
        assert not ready_machine.transition(AppState.FORM_PREVIEW, "reset")
        assert ready_machine.current_state == AppState.FORM_ACTIVE


class TestGoBack:
    def test_returns_to_previous_state(self, ready_machine):
        drive_to(ready_machine, AppState.FORM_PREVIEW)
        assert ready_machine.go_back()
        assert ready_machine.current_state == AppState.INTERVIEWING
        assert ready_machine.state_history == [AppState.INTERVIEWING]
        assert ready_machine.transition_logs[-1].trigger == "go_back"

    def test_needs_history(self, machine):
        assert not machine.go_back()

    def test_needs_a_table_edge(self, ready_machine):
        drive_to(ready_machine, AppState.PRESENTING)
        logs_before = len(ready_machine.transition_logs)
        assert not ready_machine.go_back()
        assert ready_machine.current_state == AppState.PRESENTING
        assert len(ready_machine.transition_logs) == logs_before


class TestResearchProgress:
    def test_ignored_outside_researching(self, machine):
        assert not machine.set_research_progress(50)
        assert machine.research_progress == 0

    def test_entering_research_sets_initial_progress(self, ready_machine):
        drive_to(ready_machine, AppState.RESEARCHING)
        assert ready_machine.research_progress == 5
        assert ready_machine.research_status == "Initializing research agent..."

    def test_clamped_and_rounded(self, ready_machine):
        drive_to(ready_machine, AppState.RESEARCHING)
        assert ready_machine.set_research_progress(42.6, "Searching")
        assert ready_machine.research_progress == 43
        ready_machine.set_research_progress(150)
        assert ready_machine.research_progress == 100
        assert ready_machine.research_status == "Searching"

    @pytest.mark.parametrize("percent", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_progress_is_ignored(self, ready_machine, percent):
        drive_to(ready_machine, AppState.RESEARCHING)
        ready_machine.set_research_progress(30)
        assert not ready_machine.set_research_progress(percent, "Broken")
        assert ready_machine.research_progress == 30
        assert ready_machine.research_status != "Broken"

    def test_never_decreases_within_a_run(self, ready_machine):
        drive_to(ready_machine, AppState.RESEARCHING)
        ready_machine.set_research_progress(40)
        ready_machine.set_research_progress(30, "Later step")
        assert ready_machine.research_progress == 40
        assert ready_machine.research_status == "Later step"

    def test_can_decrease_when_not_monotonic(self, vendor_schema):
        config = WorkflowConfig()
        config.research.enforce_monotonic_progress = False
        machine = AppStateMachine(config=config)
        machine.set_form_schema(vendor_schema)
        drive_to(machine, AppState.RESEARCHING)
        machine.set_research_progress(40)
        machine.set_research_progress(30)
        assert machine.research_progress == 30

    def test_cancel_and_complete(self, ready_machine):
        drive_to(ready_machine, AppState.RESEARCHING)
        ready_machine.set_research_progress(50)
        ready_machine.transition(AppState.FORM_ACTIVE, "research_cancelled")
        assert ready_machine.research_progress == 0
        assert not ready_machine.set_research_progress(70)

        ready_machine.transition(AppState.RESEARCHING, "form_submitted")
        ready_machine.transition(AppState.PRESENTING, "research_complete")
        assert ready_machine.research_progress == 100
        assert ready_machine.research_status == "Research complete!"


class TestMirroredFields:
    def test_form_data_is_deep_copied(self, ready_machine):
        data = {"features": ["email_sync"], "seats": 20}
        ready_machine.set_form_data(data)
        data["features"].append("reporting")
        data["seats"] = 99

        assert ready_machine.form_data == {"features": ["email_sync"], "seats": 20}
        session = ready_machine.get_session(ready_machine.current_session_id)
        assert session.form_data == {"features": ["email_sync"], "seats": 20}

    def test_schema_is_copied(self, machine, vendor_schema):
        machine.set_form_schema(vendor_schema)
        vendor_schema.fields[0].label = "Changed"
        assert machine.form_schema.fields[0].label == "Do you have a budget?"

    def test_set_form_value(self, ready_machine):
        ready_machine.set_form_value("seats", 12)
        ready_machine.set_form_value("contact", "a@b.co")
        assert ready_machine.form_data == {"seats": 12, "contact": "a@b.co"}

    def test_chat_messages(self, machine):
        message = machine.add_chat_message(ChatRole.USER, "Looking for a CRM")
        assert message.role == ChatRole.USER
        assert machine.chat_messages == [message]
        machine.clear_chat_messages()
        assert machine.chat_messages == []

    def test_research_results(self, machine):
        result = ResearchResult(title="CRM", summary="Use Pipedrive")
        machine.set_research_results(result)
        session = machine.get_session(machine.current_session_id)
        assert session.research_results.title == "CRM"

    def test_report_error(self, machine):
        error = machine.report_error("BACKEND_ERROR", "upstream timed out", recoverable=False)
        assert machine.error == error
        assert not machine.error.recoverable
        machine.set_error(None)
        assert machine.error is None


class TestSessions:
    def test_starts_with_one_session(self, machine):
        assert len(machine.sessions) == 1
        session = machine.get_session(machine.current_session_id)
        assert session.title == "New Research"
        assert session.state == AppState.INTERVIEWING

    def test_title_from_first_user_message(self, machine):
        machine.add_chat_message("assistant", "Hi! What are you researching?")
        machine.add_chat_message("user", "Password managers for families")
        session = machine.get_session(machine.current_session_id)
        assert session.title == "Password managers for families"

    def test_long_title_is_truncated(self, machine):
        machine.add_chat_message("user", "a" * 60)
        session = machine.get_session(machine.current_session_id)
        assert session.title == "a" * 50 + "..."

    def test_research_topic_wins_over_messages(self, machine, vendor_schema):
        machine.add_chat_message("user", "Hello")
        machine.set_form_schema(vendor_schema)
        session = machine.get_session(machine.current_session_id)
        assert session.title == "CRM vendors for a 20-person sales team"

    def test_create_and_switch(self, ready_machine):
        first = ready_machine.current_session_id
        drive_to(ready_machine, AppState.FORM_ACTIVE)
        ready_machine.set_form_value("seats", 20)

        second = ready_machine.create_new_session()
        assert second != first
        assert ready_machine.current_state == AppState.INTERVIEWING
        assert ready_machine.form_schema is None
        ready_machine.add_chat_message("user", "Second topic")

        assert ready_machine.switch_session(first)
        assert ready_machine.current_state == AppState.FORM_ACTIVE
        assert ready_machine.form_data == {"seats": 20}
        assert ready_machine.chat_messages == []

        assert ready_machine.switch_session(second)
        assert [m.content for m in ready_machine.chat_messages] == ["Second topic"]

    def test_switch_to_current_is_noop(self, machine):
        assert machine.switch_session(machine.current_session_id)

    def test_switch_to_unknown(self, machine):
        current = machine.current_session_id
        assert not machine.switch_session("session_missing")
        assert machine.error.code == SESSION_NOT_FOUND
        assert machine.current_session_id == current

    def test_delete_other_session(self, machine):
        first = machine.current_session_id
        second = machine.create_new_session()
        assert machine.delete_session(first)
        assert machine.current_session_id == second
        assert list(machine.sessions) == [second]

    def test_delete_current_session_starts_a_new_one(self, machine):
        first = machine.current_session_id
        assert machine.delete_session(first)
        assert machine.current_session_id not in (None, first)
        assert first not in machine.sessions
        assert len(machine.sessions) == 1

    def test_delete_unknown(self, machine):
        assert not machine.delete_session("session_missing")
        assert machine.error.code == SESSION_NOT_FOUND

    def test_rename(self, machine):
        assert machine.rename_session(machine.current_session_id, "Laptops")
        assert machine.get_session(machine.current_session_id).title == "Laptops"
        assert not machine.rename_session("session_missing", "x")

    def test_list_is_newest_first(self, machine):
        machine.create_new_session()
        machine.create_new_session()
        stamps = [s.updated_at for s in machine.list_sessions()]
        assert stamps == sorted(stamps, reverse=True)
        assert len(stamps) == 3


class TestSerialization:
    def test_round_trip(self, ready_machine):
        drive_to(ready_machine, AppState.FORM_ACTIVE)
        ready_machine.set_form_value("seats", 20)
        ready_machine.add_chat_message("user", "CRM please")
        ready_machine.report_error("BACKEND_ERROR", "not persisted")

        restored = AppStateMachine()
        restored.restore(ready_machine.to_persisted())

        assert restored.current_state == AppState.FORM_ACTIVE
        assert restored.current_session_id == ready_machine.current_session_id
        assert restored.form_data == {"seats": 20}
        assert restored.state_history == ready_machine.state_history
        assert len(restored.transition_logs) == 2
        assert restored.error is None

    def test_restore_with_missing_current_session(self, machine):
        persisted = machine.to_persisted()
        persisted.current_session_id = "session_gone"
        other = AppStateMachine()
        other.restore(persisted)
        assert other.current_session_id in other.sessions
        assert other.current_session_id != "session_gone"

    def test_unknown_stored_state_falls_back(self, machine):
        record = machine.to_persisted().to_record()
        record["currentState"] = "DANCING"
        record["sessions"][0]["state"] = "DANCING"
        persisted = PersistedAppState.model_validate(record)
        assert persisted.current_state == AppState.INTERVIEWING
        assert persisted.sessions[0].state == AppState.INTERVIEWING


class FailingRepository:
    """Repository whose storage is unavailable."""

    def __init__(self, fail_load: bool = True):
        self.fail_load = fail_load
        self.saves = 0

    async def load(self, key):
        if self.fail_load:
            raise StorageError("disk unavailable")
        return None

    async def save(self, key, version, record):
        self.saves += 1
        raise StorageError("disk full")


class TestPersistence:
    async def test_state_survives_restart(self, persistent_machine, state_repo, vendor_schema):
        persistent_machine.set_form_schema(vendor_schema)
        persistent_machine.transition(AppState.FORM_PREVIEW, "view_form")
        persistent_machine.add_chat_message("user", "CRM research")
        await persistent_machine.flush()

        reloaded = AppStateMachine(repository=state_repo)
        assert await reloaded.hydrate()
        assert reloaded.current_state == AppState.FORM_PREVIEW
        assert reloaded.current_session_id == persistent_machine.current_session_id
        assert reloaded.form_schema.get_field("seats") is not None
        assert [m.content for m in reloaded.chat_messages] == ["CRM research"]

    async def test_version_mismatch_discards_record(self, persistent_machine, state_repo):
        persistent_machine.add_chat_message("user", "old format")
        await persistent_machine.flush()

        newer = AppStateMachine(repository=state_repo, storage_version=2)
        assert not await newer.hydrate()
        assert newer.is_hydrated
        assert newer.chat_messages == []
        assert len(newer.sessions) == 1

    async def test_invalid_record_is_ignored(self, state_repo):
        await state_repo.save("research-ai-state", 1, {"sessions": "not a list"})
        machine = AppStateMachine(repository=state_repo)
        assert not await machine.hydrate()
        assert machine.is_hydrated
        assert machine.current_state == AppState.INTERVIEWING

    async def test_unreadable_storage_degrades_to_memory(self):
        machine = AppStateMachine(repository=FailingRepository())
        assert not machine.is_hydrated
        assert not await machine.hydrate()
        assert machine.is_hydrated
        assert not machine.storage_available

        machine.add_chat_message("user", "still works")
        await machine.flush()
        assert machine.repository.saves == 0

    async def test_write_failure_degrades_to_memory(self):
        repository = FailingRepository(fail_load=False)
        machine = AppStateMachine(repository=repository)
        await machine.hydrate()

        machine.add_chat_message("user", "first")
        await machine.flush()
        assert not machine.storage_available
        assert repository.saves == 1

        machine.add_chat_message("user", "second")
        await machine.flush()
        assert repository.saves == 1
        assert len(machine.chat_messages) == 2

    async def test_in_memory_machine_is_hydrated(self, machine):
        await machine.wait_until_hydrated()
        assert machine.is_hydrated
