"""Unit tests for the Kill Switch Controller."""

import pytest
from flagengine.core.actor import Actor
from flagengine.core.errors import InvalidArgumentError, NotFoundError
from flagengine.models.audit_log import AuditAction


class TestKillSwitchController:
    def test_activate_creates_active_switch(self, flag_engine, make_flag, admin):
        make_flag("payments")

        switch = flag_engine.kill_switches.activate("payments", "Incident #42", admin)

        assert switch.active is True
        assert switch.reason == "Incident #42"
        assert switch.activated_by == "alice-admin"
        assert flag_engine.snapshot.kill_switch_active("payments") is True

    def test_activate_requires_reason(self, flag_engine, make_flag, admin):
        make_flag("payments")
        with pytest.raises(InvalidArgumentError):
            flag_engine.kill_switches.activate("payments", "  ", admin)
        assert flag_engine.ledger.for_flag("payments")[0].action == AuditAction.CREATE.value

    def test_activate_unknown_flag(self, flag_engine, admin):
        with pytest.raises(NotFoundError):
            flag_engine.kill_switches.activate("ghost", "why not", admin)

    def test_activate_archived_flag_is_allowed(self, flag_engine, make_flag, admin):
        make_flag("payments")
        flag_engine.registry.archive("payments", admin)

        assert flag_engine.kill_switches.activate("payments", "cleanup incident", admin).active is True

    def test_reactivation_is_idempotent_and_audited(self, flag_engine, make_flag, admin):
        make_flag("payments")
        flag_engine.kill_switches.activate("payments", "first", admin)

        bob = Actor(actor_id="bob-oncall")
        switch = flag_engine.kill_switches.activate("payments", "second", bob)

        assert switch.active is True
        assert switch.reason == "second"
        assert switch.activated_by == "bob-oncall"
        assert len(flag_engine.kill_switches.list_active()) == 1
        actions = [entry.action for entry in flag_engine.ledger.for_flag("payments")]
        assert actions.count(AuditAction.KILLSWITCH_ACTIVATE.value) == 2

    def test_deactivate_clears_reason(self, flag_engine, make_flag, admin):
        make_flag("payments")
        flag_engine.kill_switches.activate("payments", "incident", admin)

        switch = flag_engine.kill_switches.deactivate("payments", admin)

        assert switch.active is False
        assert switch.reason is None
        assert switch.activated_by is None
        assert flag_engine.snapshot.kill_switch_active("payments") is False

    def test_deactivate_never_activated_switch(self, flag_engine, make_flag, admin):
        make_flag("payments")

        switch = flag_engine.kill_switches.deactivate("payments", admin)

        assert switch.active is False
        latest = flag_engine.ledger.for_flag("payments")[0]
        assert latest.action == AuditAction.KILLSWITCH_DEACTIVATE.value

    def test_deactivate_unknown_flag(self, flag_engine, admin):
        with pytest.raises(NotFoundError):
            flag_engine.kill_switches.deactivate("ghost", admin)

    def test_get_implicit_inactive(self, flag_engine, make_flag):
        make_flag("payments")
        switch = flag_engine.kill_switches.get("payments")
        assert switch.active is False
        assert switch.flag_key == "payments"

    def test_list_active(self, flag_engine, make_flag, admin):
        for key in ("b-flag", "a-flag", "c-flag"):
            make_flag(key)
        flag_engine.kill_switches.activate("b-flag", "x", admin)
        flag_engine.kill_switches.activate("a-flag", "y", admin)
        flag_engine.kill_switches.activate("c-flag", "z", admin)
        flag_engine.kill_switches.deactivate("c-flag", admin)

        assert [switch.flag_key for switch in flag_engine.kill_switches.list_active()] == ["a-flag", "b-flag"]

    def test_switch_does_not_touch_flag_configuration(self, flag_engine, make_flag, admin):
        flag = make_flag("payments", enabled=True, rollout_percentage=40)

        flag_engine.kill_switches.activate("payments", "incident", admin)
        flag_engine.kill_switches.deactivate("payments", admin)

        after = flag_engine.registry.get("payments")
        assert (after.enabled, after.rollout_percentage, after.version) == (True, 40, flag.version)
