"""Tests for PlannerSession wiring."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from zerog.models.config import AppConfig
from zerog.models.identity import UserIdentity
from zerog.services.event_bus import EventBus
from zerog.services.reminder_scheduler import NotificationScheduler
from zerog.services.session import PlannerSession, demo_tasks


@pytest.fixture
def config():
    return AppConfig(storage={"data_dir": None, "seed_demo_tasks": False})


@pytest.fixture
def gateway():
    return MagicMock()


@pytest.fixture
def scheduler():
    return MagicMock()


@pytest.fixture
def identity():
    return UserIdentity(email="ada@example.com", name="Ada")


@pytest.fixture
def session(config, clock, store, gateway, scheduler, identity):
    """Started session over a real store with mocked side effects."""
    session = PlannerSession(
        config=config,
        identity=identity,
        clock=clock,
        store=store,
        gateway=gateway,
        scheduler=scheduler,
        event_bus=EventBus(),
        notifier=MagicMock(),
    )
    session.start()
    yield session
    session.close()


class TestStart:
    """Tests for session start."""

    def test_hydrates_when_identity_present(self, session, gateway, identity):
        gateway.start.assert_called_once()
        gateway.hydrate.assert_called_once_with(identity)
        gateway.hydrate_profile.assert_called_once_with(identity)

    def test_anonymous_start_skips_hydration(self, config, clock, store, gateway, scheduler):
        session = PlannerSession(
            config=config, clock=clock, store=store, gateway=gateway, scheduler=scheduler
        )
        session.start()

        gateway.hydrate.assert_not_called()
        scheduler.reschedule_all.assert_called_once_with([])
        session.close()

    def test_start_is_idempotent(self, session, gateway):
        session.start()
        gateway.start.assert_called_once()

    def test_seeds_demo_tasks_without_pushing(self, clock, store, gateway, scheduler):
        config = AppConfig(storage={"data_dir": None, "seed_demo_tasks": True})
        session = PlannerSession(
            config=config, clock=clock, store=store, gateway=gateway, scheduler=scheduler
        )
        session.start()

        assert len(store.list_tasks()) == 3
        gateway.push_upsert.assert_not_called()
        session.close()

    def test_seeding_skipped_when_store_has_tasks(self, clock, store, gateway, scheduler, deadline):
        store.add_task("Mine", deadline)
        config = AppConfig(storage={"data_dir": None, "seed_demo_tasks": True})
        session = PlannerSession(
            config=config, clock=clock, store=store, gateway=gateway, scheduler=scheduler
        )
        session.start()

        assert [t.title for t in store.list_tasks()] == ["Mine"]
        session.close()

    def test_demo_tasks_are_in_the_future(self, clock):
        for fields in demo_tasks(clock()):
            assert fields["deadline"] > clock()


class TestStoreWiring:
    """Tests for store events reaching their side effects."""

    def test_add_pushes_and_arms_reminder(self, session, store, gateway, scheduler, identity, deadline):
        task = store.add_task("Launch", deadline)

        gateway.push_upsert.assert_called_once()
        pushed, pushed_identity = gateway.push_upsert.call_args[0]
        assert pushed.id == task.id
        assert pushed_identity == identity
        scheduler.schedule_for_task.assert_called_once_with(task.id, "Launch", deadline)

    def test_complete_cancels_reminder_and_pushes_profile(
        self, session, store, gateway, scheduler, deadline
    ):
        task = store.add_task("Launch", deadline, urgency=2)
        store.complete_task(task.id)

        scheduler.cancel_for_task.assert_called_with(task.id)
        gateway.push_profile.assert_called_once()
        snapshot = gateway.push_profile.call_args[0][0]
        assert snapshot.xp == 40

    def test_recall_pushes_without_profile(self, session, store, gateway, deadline):
        task = store.add_task("Launch", deadline)
        store.complete_task(task.id)
        gateway.reset_mock()

        store.recall_task(task.id)

        gateway.push_upsert.assert_called_once()
        gateway.push_profile.assert_not_called()

    def test_delete_by_date_pushes_bulk_delete(self, session, store, gateway, scheduler, deadline):
        a = store.add_task("A", deadline)
        b = store.add_task("B", deadline)
        store.add_task("Tomorrow", deadline + timedelta(days=1))

        store.delete_tasks_by_date(deadline.date())

        deleted = gateway.push_bulk_delete.call_args[0][0]
        assert {t.id for t in deleted} == {a.id, b.id}
        scheduler.cancel_for_task.assert_any_call(a.id)
        scheduler.cancel_for_task.assert_any_call(b.id)

    def test_remove_pushes_delete(self, session, store, gateway, deadline):
        task = store.add_task("A", deadline)
        store.remove_task(task.id)

        assert [t.id for t in gateway.push_bulk_delete.call_args[0][0]] == [task.id]

    def test_bulk_complete_pushes_each_task(self, session, store, gateway, deadline):
        for title in ("A", "B"):
            store.add_task(title, deadline)
        gateway.reset_mock()

        store.set_all_status(deadline.date(), "completed")

        assert gateway.push_upsert.call_count == 2
        gateway.push_profile.assert_called_once()

    def test_replace_resyncs_reminders(self, session, store, scheduler, deadline):
        scheduler.reset_mock()
        store.replace_all([{"id": "r1", "title": "Remote", "deadline": deadline}])

        scheduler.reschedule_all.assert_called_once()
        assert [t.id for t in scheduler.reschedule_all.call_args[0][0]] == ["r1"]

    def test_events_reach_event_bus(self, session, store, deadline):
        store.add_task("Launch", deadline)
        events = session.event_bus.get_buffered_events(event_type="task_added")

        assert len(events) == 1
        assert events[0].data["tasks"][0]["title"] == "Launch"

    def test_side_effect_failure_does_not_undo_commit(self, session, store, gateway, deadline):
        gateway.push_upsert.side_effect = RuntimeError("boom")

        task = store.add_task("Launch", deadline)

        assert store.get_task(task.id) is not None


class TestIdentity:
    """Tests for sign in / sign out."""

    def test_sign_out_then_push_is_anonymous(self, session, store, gateway, deadline):
        session.sign_out()
        store.add_task("Launch", deadline)

        assert gateway.push_upsert.call_args[0][1] is None

    def test_sign_in_hydrates(self, session, gateway):
        gateway.hydrate.reset_mock()
        gateway.hydrate.return_value = True
        other = UserIdentity(email="grace@example.com")

        assert session.sign_in(other) is True
        gateway.hydrate.assert_called_once_with(other)

    def test_sign_in_before_start(self, config, clock, store, gateway, scheduler, identity):
        session = PlannerSession(
            config=config, clock=clock, store=store, gateway=gateway, scheduler=scheduler
        )
        assert session.sign_in(identity) is False
        gateway.hydrate.assert_not_called()


class TestClose:
    """Tests for session close."""

    def test_close_stops_side_effects(self, config, clock, store, gateway, scheduler, deadline):
        with PlannerSession(
            config=config, clock=clock, store=store, gateway=gateway, scheduler=scheduler
        ) as session:
            assert session.started

        scheduler.cancel_all.assert_called_once()
        gateway.stop.assert_called_once()
        gateway.drain.assert_called_once()

        store.add_task("After close", deadline)
        gateway.push_upsert.assert_not_called()


def test_default_components_follow_config(clock):
    config = AppConfig(
        storage={"data_dir": None, "seed_demo_tasks": False},
        remote={"enabled": False, "base_url": "http://x.test/api"},
        reminders={"lead_minutes": 30},
    )
    session = PlannerSession(config=config, clock=clock)

    assert session.gateway.enabled is False
    assert session.gateway.base_url == "http://x.test/api"
    assert session.scheduler.lead_time == timedelta(minutes=30)
    assert session.store.data_dir is None


class _Timer:
    def __init__(self, interval, callback):
        self.interval = interval
        self.callback = callback

    def start(self):
        pass

    def cancel(self):
        pass


class TestOffsetDeadlines:
    """Deadlines carrying a UTC offset, end to end with a real scheduler."""

    @pytest.fixture
    def real_scheduler(self, clock):
        return NotificationScheduler(notifier=MagicMock(), clock=clock, timer_factory=_Timer)

    def test_utc_deadline_arms_reminder(self, config, clock, store, gateway, real_scheduler):
        session = PlannerSession(
            config=config, clock=clock, store=store, gateway=gateway, scheduler=real_scheduler
        )
        session.start()
        utc = datetime(2026, 3, 11, 10, 0, tzinfo=timezone.utc)

        task = store.add_task("Launch", utc)

        pending = real_scheduler.get_pending(task.id)
        assert pending is not None
        assert pending.deadline == utc.astimezone().replace(tzinfo=None)
        session.close()

    def test_restart_with_offset_deadline_on_disk(self, clock, temp_dir, gateway, real_scheduler):
        config = AppConfig(storage={"data_dir": str(temp_dir), "seed_demo_tasks": False})
        (temp_dir / "state.yaml").write_text(
            "tasks:\n"
            "- id: t1\n"
            "  title: Launch\n"
            "  deadline: '2026-03-11T10:00:00Z'\n"
            "gamification: {}\n"
        )
        session = PlannerSession(config=config, clock=clock, gateway=gateway, scheduler=real_scheduler)

        session.start()

        assert real_scheduler.pending_ids == {"t1"}
        session.close()
