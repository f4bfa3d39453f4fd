"""
Test suite for the workflow engine facade

Runs complete lifecycles through WorkflowEngine: registration, instance
creation, transitions, side effects, events, audit, overdue queries and
restart from SQLite.
"""

import threading

import pytest

from talent_workflows.config import WorkflowEngineConfig
from talent_workflows.engine import WorkflowEngine
from talent_workflows.errors import InvalidTransitionError, NotFoundError, ValidationError
from talent_workflows.events import WorkflowEvent
from talent_workflows.models import (
    WorkflowAction, WorkflowCondition, WorkflowDefinition, WorkflowSettings,
    WorkflowState, WorkflowTransition
)
from talent_workflows.storage import InMemoryStorage, SQLiteStorage


def two_state_definition(**settings):
    return WorkflowDefinition(
        id="wf_submission",
        name="Submission",
        entity_type="submission",
        states=[WorkflowState("draft", "Draft"), WorkflowState("submitted", "Submitted")],
        transitions=[WorkflowTransition(id="t1", name="submit", from_state="draft",
                                        to_state="submitted")],
        initial_state="draft",
        final_states=["submitted"],
        settings=WorkflowSettings(**settings)
    )


def resume_definition():
    """draft -> review via attach (stores resumeUrl) or skip; review -> approved needs resumeUrl"""
    return WorkflowDefinition(
        id="wf_resume",
        name="Resume Review",
        entity_type="candidate",
        states=[WorkflowState("draft", "Draft"), WorkflowState("review", "Review"),
                WorkflowState("approved", "Approved")],
        transitions=[
            WorkflowTransition(
                id="attach", name="attach_resume", from_state="draft", to_state="review",
                actions=[WorkflowAction("store", "update_field",
                                        {"field": "resumeUrl", "value": "s3://cv/c9.pdf"})]),
            WorkflowTransition(id="skip", name="skip_resume", from_state="draft", to_state="review"),
            WorkflowTransition(
                id="approve", name="approve", from_state="review", to_state="approved",
                conditions=[WorkflowCondition(type="field", field="resumeUrl", operator="exists")],
                actions=[WorkflowAction("mail", "email", {"template": "candidate_approved"})]),
        ],
        initial_state="draft",
        final_states=["approved"],
        settings=WorkflowSettings(sla_days=5)
    )


def make_engine(clock, storage=None, **overrides):
    settings = dict(action_dispatch_mode="sync", enable_audit_logging=True)
    settings.update(overrides)
    return WorkflowEngine(storage or InMemoryStorage(), config=WorkflowEngineConfig(**settings),
                          clock=clock)


@pytest.fixture
def engine(clock):
    engine = make_engine(clock)
    yield engine
    engine.close()


def assert_consistent(instance, definition):
    """History and completion flags agree with the current state"""
    assert instance.current_state == instance.history[-1].to_state
    for earlier, later in zip(instance.history, instance.history[1:]):
        assert later.from_state == earlier.to_state
        assert later.timestamp >= earlier.timestamp
    assert (instance.completed_at is not None) == definition.is_final(instance.current_state)


class TestLifecycle:
    """Test the basic create and transition flow"""

    def test_two_state_workflow(self, engine, clock):
        definition = engine.register_workflow(two_state_definition())

        instance = engine.create_instance("wf_submission", "submission", "s1")
        assert instance.current_state == "draft"
        assert instance.completed_at is None
        assert len(instance.history) == 1

        clock.advance(minutes=90)
        instance = engine.execute_transition(instance.id, "t1", "u1", "Avery Chen")

        assert instance.current_state == "submitted"
        assert instance.previous_state == "draft"
        assert instance.completed_at == clock.now
        assert len(instance.history) == 2
        assert instance.history[1].duration == 90 * 60 * 1000
        assert instance.history[1].transition_name == "submit"
        assert_consistent(instance, definition)

    def test_final_state_has_no_transitions(self, engine):
        engine.register_workflow(two_state_definition())
        instance = engine.create_instance("wf_submission", "submission", "s1")
        engine.execute_transition(instance.id, "t1", "u1", "Avery Chen")

        assert engine.get_available_transitions(instance.id) == []
        with pytest.raises(InvalidTransitionError):
            engine.execute_transition(instance.id, "t1", "u1", "Avery Chen")

    def test_unknown_workflow(self, engine):
        with pytest.raises(NotFoundError):
            engine.create_instance("wf_missing", "submission", "s1")

    def test_unknown_instance(self, engine):
        with pytest.raises(NotFoundError):
            engine.execute_transition("missing", "t1", "u1", "Avery Chen")

    def test_required_comments_leave_instance_unchanged(self, engine):
        """Test a missing comment is rejected before anything is committed"""
        engine.register_workflow(two_state_definition(require_comments=True))
        instance = engine.create_instance("wf_submission", "submission", "s1")

        for comments in (None, "   "):
            with pytest.raises(ValidationError):
                engine.execute_transition(instance.id, "t1", "u1", "Avery Chen", comments=comments)

        unchanged = engine.get_instance(instance.id)
        assert unchanged == instance

        done = engine.execute_transition(instance.id, "t1", "u1", "Avery Chen", comments="Looks good")
        assert done.history[-1].comments == "Looks good"

    def test_reads_are_idempotent(self, engine, clock):
        engine.register_workflow(resume_definition())
        instance = engine.create_instance("wf_resume", "candidate", "c9")
        clock.advance(hours=1)

        first = engine.get_available_transitions(instance.id)
        second = engine.get_available_transitions(instance.id)

        assert first == second
        assert engine.get_instance(instance.id) == engine.get_instance(instance.id)
        assert engine.get_metrics("wf_resume") == engine.get_metrics("wf_resume")
        assert len(engine.get_instance(instance.id).history) == 1

    def test_get_all_metrics(self, engine):
        engine.register_workflow(two_state_definition())
        engine.register_workflow(resume_definition())
        instance = engine.create_instance("wf_submission", "submission", "s1")
        engine.execute_transition(instance.id, "t1", "u1", "Avery Chen")

        results = engine.get_all_metrics()

        assert [(m.workflow_id, m.workflow_name) for m in results] == [
            ("wf_resume", "Resume Review"), ("wf_submission", "Submission")]
        assert results[1].completed_instances == 1
        assert engine.get_metrics("wf_submission").workflow_name == "Submission"
        assert engine.get_metrics("wf_missing").workflow_name == ""

    def test_get_instances_by_entity(self, engine):
        engine.register_workflow(two_state_definition())
        first = engine.create_instance("wf_submission", "submission", "s1")
        engine.create_instance("wf_submission", "submission", "s2")

        assert [i.id for i in engine.get_instances_by_entity("submission", "s1")] == [first.id]


class TestConditionsAndActions:
    """Test guards unlocked by earlier actions and isolated side effects"""

    def test_update_field_unlocks_exists_condition(self, engine):
        engine.register_workflow(resume_definition())
        skipped = engine.create_instance("wf_resume", "candidate", "c1")
        attached = engine.create_instance("wf_resume", "candidate", "c2")

        engine.execute_transition(skipped.id, "skip", "u1", "Avery Chen")
        engine.execute_transition(attached.id, "attach", "u1", "Avery Chen")

        assert engine.get_available_transitions(skipped.id) == []
        assert not engine.can_transition_to(skipped.id, "approved")
        with pytest.raises(InvalidTransitionError):
            engine.execute_transition(skipped.id, "approve", "u1", "Avery Chen")

        assert engine.get_instance(attached.id).metadata["resumeUrl"] == "s3://cv/c9.pdf"
        assert [t.id for t in engine.get_available_transitions(attached.id)] == ["approve"]
        assert engine.can_transition_to(attached.id, "approved")

    def test_failing_email_does_not_fail_transition(self, engine):
        """Test a broken side effect is only visible on the event channel"""
        failures = []
        engine.events.subscribe(WorkflowEvent.ACTION_FAILED, failures.append)

        def broken_sender(action, instance):
            raise ConnectionError("smtp unreachable")

        engine.register_action_handler("email", broken_sender)
        engine.register_workflow(resume_definition())
        instance = engine.create_instance("wf_resume", "candidate", "c1")
        engine.execute_transition(instance.id, "attach", "u1", "Avery Chen")

        result = engine.execute_transition(instance.id, "approve", "u1", "Avery Chen")

        assert result.current_state == "approved"
        assert engine.get_instance(instance.id).current_state == "approved"
        assert len(failures) == 1
        assert failures[0].entity_id == instance.id
        assert "smtp unreachable" in failures[0].data["error"]

    def test_failing_email_in_background(self, clock):
        engine = make_engine(clock, action_dispatch_mode="background")
        failures = []
        engine.events.subscribe(WorkflowEvent.ACTION_FAILED, failures.append)
        engine.register_action_handler("email", lambda action, instance: False)
        engine.register_workflow(resume_definition())
        try:
            instance = engine.create_instance("wf_resume", "candidate", "c1")
            engine.execute_transition(instance.id, "attach", "u1", "Avery Chen")
            result = engine.execute_transition(instance.id, "approve", "u1", "Avery Chen")

            assert result.current_state == "approved"
            assert engine.wait_for_actions(timeout=5) is True
            assert [f.data["action_id"] for f in failures] == ["mail"]
        finally:
            engine.close()

    def test_default_email_handler_succeeds_without_sender(self, engine):
        executed = []
        engine.events.subscribe(WorkflowEvent.ACTION_EXECUTED, executed.append)
        engine.register_workflow(resume_definition())
        instance = engine.create_instance("wf_resume", "candidate", "c1")
        engine.execute_transition(instance.id, "attach", "u1", "Avery Chen")
        engine.execute_transition(instance.id, "approve", "u1", "Avery Chen")

        assert [e.data["action_type"] for e in executed] == ["email"]

    def test_email_sender_receives_message(self, clock):
        sent = []
        engine = WorkflowEngine(InMemoryStorage(),
                                config=WorkflowEngineConfig(action_dispatch_mode="sync"),
                                email_sender=sent.append, clock=clock)
        try:
            engine.register_workflow(resume_definition())
            instance = engine.create_instance("wf_resume", "candidate", "c1")
            engine.execute_transition(instance.id, "attach", "u1", "Avery Chen")
            engine.execute_transition(instance.id, "approve", "u1", "Avery Chen")
        finally:
            engine.close()

        assert len(sent) == 1
        assert sent[0]["subject"] == "candidate_approved"
        assert sent[0]["instance_id"] == instance.id


class TestEventsAndAudit:
    """Test what the engine reports about itself"""

    def test_events_published(self, engine):
        received = []
        engine.events.subscribe_all(received.append)
        engine.register_workflow(two_state_definition())
        instance = engine.create_instance("wf_submission", "submission", "s1")
        engine.execute_transition(instance.id, "t1", "u1", "Avery Chen")

        assert [e.event_type for e in received] == [
            WorkflowEvent.WORKFLOW_REGISTERED,
            WorkflowEvent.INSTANCE_CREATED,
            WorkflowEvent.INSTANCE_TRANSITIONED,
            WorkflowEvent.INSTANCE_COMPLETED,
        ]
        assert received[2].data["from_state"] == "draft"
        assert received[2].data["to_state"] == "submitted"

    def test_audit_trail_records_lifecycle(self, engine):
        engine.register_workflow(two_state_definition())
        instance = engine.create_instance("wf_submission", "submission", "s1", assigned_to="u1")
        engine.execute_transition(instance.id, "t1", "u2", "Jordan Lee", comments="Ready")

        events = engine.audit.get_events_for_entity("workflow_instance", instance.id)

        assert [e.event_type.value for e in events] == ["instance_created", "instance_transitioned"]
        assert events[1].user_id == "u2"
        assert events[1].metadata["comments"] == "Ready"
        assert engine.audit.verify_integrity()["valid"] is True

    def test_audit_can_be_disabled(self, clock):
        engine = make_engine(clock, enable_audit_logging=False)
        assert engine.audit is None
        engine.close()

    def test_unregister_keeps_running_instances(self, engine):
        engine.register_workflow(two_state_definition())
        instance = engine.create_instance("wf_submission", "submission", "s1")

        assert engine.unregister_workflow("wf_submission") is True
        assert engine.unregister_workflow("wf_submission") is False
        assert engine.list_workflows() == []

        done = engine.execute_transition(instance.id, "t1", "u1", "Avery Chen")
        assert done.current_state == "submitted"


class TestSLA:
    """Test overdue tracking"""

    def test_get_overdue_instances(self, engine, clock):
        engine.register_workflow(resume_definition())
        late = engine.create_instance("wf_resume", "candidate", "c1")
        finished = engine.create_instance("wf_resume", "candidate", "c2")
        engine.execute_transition(finished.id, "attach", "u1", "Avery Chen")
        engine.execute_transition(finished.id, "approve", "u1", "Avery Chen")

        assert engine.get_overdue_instances() == []

        clock.advance(days=6)
        overdue = engine.get_overdue_instances()

        assert [i.id for i in overdue] == [late.id]
        assert engine.get_instance(late.id).is_overdue is False

    def test_transition_after_deadline_sets_flag(self, engine, clock):
        engine.register_workflow(resume_definition())
        instance = engine.create_instance("wf_resume", "candidate", "c1")
        clock.advance(days=6)

        moved = engine.execute_transition(instance.id, "skip", "u1", "Avery Chen")

        assert moved.is_overdue is True


class TestRestore:
    """Test engine state survives a restart"""

    def test_restore_from_sqlite(self, tmp_path, clock):
        db_path = tmp_path / "workflows.db"

        with make_engine(clock, storage=SQLiteStorage(db_path)) as first:
            first.register_workflow(resume_definition())
            instance = first.create_instance("wf_resume", "candidate", "c1")
            first.execute_transition(instance.id, "attach", "u1", "Avery Chen")
            before = first.get_instance(instance.id)

        with make_engine(clock, storage=SQLiteStorage(db_path)) as second:
            restored = second.get_instance(instance.id)

            assert restored == before
            assert second.get_workflow("wf_resume").name == "Resume Review"
            assert [t.id for t in second.get_available_transitions(instance.id)] == ["approve"]

            second.execute_transition(instance.id, "approve", "u1", "Avery Chen")
            assert second.audit.count_events() == 4
            assert second.audit.verify_integrity()["valid"] is True

    def test_restore_disabled(self, tmp_path, clock):
        db_path = tmp_path / "workflows.db"
        with make_engine(clock, storage=SQLiteStorage(db_path)) as first:
            first.register_workflow(two_state_definition())

        with make_engine(clock, storage=SQLiteStorage(db_path), restore_on_start=False) as second:
            assert second.list_workflows() == []
            assert second.restore() == {"definitions": 1, "instances": 0}
            assert len(second.list_workflows()) == 1


class TestConcurrentTransitions:
    """Test transitions racing on the same instance"""

    def test_competing_transitions_serialize(self, engine):
        """Test exactly one of two racing transitions from the same state wins"""
        definition = engine.register_workflow(resume_definition())
        instance = engine.create_instance("wf_resume", "candidate", "c1")
        barrier = threading.Barrier(2)
        outcomes = []
        lock = threading.Lock()

        def race(transition_id):
            barrier.wait()
            try:
                engine.execute_transition(instance.id, transition_id, "u1", "Avery Chen")
                outcome = ("ok", transition_id)
            except InvalidTransitionError:
                outcome = ("rejected", transition_id)
            with lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=race, args=(t,)) for t in ("attach", "skip")]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(kind for kind, _ in outcomes) == ["ok", "rejected"]
        winner = next(t for kind, t in outcomes if kind == "ok")

        final = engine.get_instance(instance.id)
        assert final.current_state == "review"
        assert len(final.history) == 2
        assert final.history[-1].transition_id == winner
        assert_consistent(final, definition)

    def test_slow_action_does_not_hold_instance(self, clock):
        """Test a blocked background side effect does not block the next transition"""
        engine = make_engine(clock, action_dispatch_mode="background", action_timeout_seconds=10)
        started = threading.Event()
        release = threading.Event()

        def slow(action, instance):
            started.set()
            release.wait(5)

        engine.register_action_handler("custom:slow", slow)
        engine.register_workflow(WorkflowDefinition(
            id="wf_slow",
            name="Slow Side Effects",
            entity_type="job",
            states=[WorkflowState("open", "Open"), WorkflowState("hold", "On Hold"),
                    WorkflowState("closed", "Closed")],
            transitions=[
                WorkflowTransition(id="pause", name="pause", from_state="open", to_state="hold",
                                   actions=[WorkflowAction("slow", "custom:slow")]),
                WorkflowTransition(id="close", name="close", from_state="hold", to_state="closed"),
            ],
            initial_state="open",
            final_states=["closed"]
        ))
        try:
            instance = engine.create_instance("wf_slow", "job", "j1")
            engine.execute_transition(instance.id, "pause", "u1", "Avery Chen")
            assert started.wait(5)

            closed = engine.execute_transition(instance.id, "close", "u1", "Avery Chen")
            assert closed.current_state == "closed"
        finally:
            release.set()
            engine.close()
