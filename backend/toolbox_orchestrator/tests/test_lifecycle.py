from django.contrib.auth import get_user_model
from django.test import TestCase

from toolbox_orchestrator.errors import InvalidTransition
from toolbox_orchestrator.lifecycle import TRANSITIONS, can_transition, transition
from toolbox_orchestrator.models import ToolboxEvent, ToolboxRecord


class LifecycleTests(TestCase):
    def setUp(self):
        self.user = get_user_model().objects.create_user(username="owner", password="pass")
        self.record = ToolboxRecord.objects.create(owner=self.user, name="box", region="us-east-1", size_class="small")

    def test_every_status_has_an_entry(self):
        statuses = {value for value, _label in ToolboxRecord.STATUS_CHOICES}
        self.assertEqual(set(TRANSITIONS), statuses)
        for targets in TRANSITIONS.values():
            self.assertTrue(targets <= statuses)

    def test_terminal_and_reserved_states(self):
        self.assertEqual(TRANSITIONS["deprovisioned"], frozenset())
        self.assertEqual(TRANSITIONS["awaiting_heartbeat"], frozenset())
        self.assertFalse(any("awaiting_heartbeat" in targets for targets in TRANSITIONS.values()))

    def test_happy_path_walk_records_events(self):
        for status in ("pending_creation", "creating", "active", "pending_deprovision", "deprovisioning", "deprovisioned"):
            transition(self.record.id, status, message=f"to {status}")
        self.record.refresh_from_db()
        self.assertEqual(self.record.status, "deprovisioned")
        events = list(ToolboxEvent.objects.filter(toolbox=self.record).values_list("from_status", "to_status"))
        self.assertEqual(
            events,
            [
                ("inactive", "pending_creation"),
                ("pending_creation", "creating"),
                ("creating", "active"),
                ("active", "pending_deprovision"),
                ("pending_deprovision", "deprovisioning"),
                ("deprovisioning", "deprovisioned"),
            ],
        )

    def test_invalid_transition_is_rejected_and_not_persisted(self):
        with self.assertRaises(InvalidTransition):
            transition(self.record.id, "active")
        self.record.refresh_from_db()
        self.assertEqual(self.record.status, "inactive")
        self.assertFalse(ToolboxEvent.objects.exists())

    def test_expected_guard(self):
        with self.assertRaises(InvalidTransition):
            transition(self.record.id, "pending_creation", expected=["creating"])

    def test_error_states_only_lead_to_deletion(self):
        for status in ("error_creation", "error_provisioning", "error_deprovisioning"):
            self.assertEqual(TRANSITIONS[status], frozenset({"pending_deprovision"}))
        self.assertFalse(can_transition("error_creation", "active"))

    def test_transition_stamps_status_changed_at_and_error(self):
        before = self.record.status_changed_at
        transition(self.record.id, "pending_creation")
        transition(self.record.id, "error_creation", error_message="quota exceeded")
        self.record.refresh_from_db()
        self.assertGreaterEqual(self.record.status_changed_at, before)
        self.assertEqual(self.record.provisioning_error_message, "quota exceeded")

    def test_repr_hides_agent_token(self):
        self.assertNotIn(self.record.agent_auth_token, repr(self.record))
        self.assertNotIn(self.record.agent_auth_token, str(self.record))
