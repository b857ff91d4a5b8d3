from unittest import mock

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.test import TestCase, override_settings

from toolbox_orchestrator import jobs
from toolbox_orchestrator.models import ToolboxRecord
from toolbox_orchestrator.reconciler import TickResult
from toolbox_orchestrator.user_data import build_bootstrap_script
from toolbox_orchestrator.worker_tasks import poll_toolbox_status


class PollingLoopTests(TestCase):
    def test_new_loop_supersedes_the_old_one(self):
        with mock.patch.object(jobs, "enqueue_poll"):
            jobs.schedule_reconcile("tb-1")
            first = jobs.cache.get("toolbox-poll-loop:tb-1")
            jobs.schedule_reconcile("tb-1")
        self.assertFalse(jobs.is_current_loop("tb-1", first))

    def test_superseded_loop_stops(self):
        with mock.patch("toolbox_orchestrator.worker_tasks._setup_django"), mock.patch(
            "toolbox_orchestrator.reconciler.tick"
        ) as tick:
            self.assertEqual(poll_toolbox_status("tb-2", "stale-token"), "superseded")
        tick.assert_not_called()

    @override_settings(TOOLBOX_POLL_INTERVAL_SECONDS=15)
    def test_loop_reenqueues_while_polling_is_needed(self):
        jobs.cache.set("toolbox-poll-loop:tb-3", "tok")
        with mock.patch("toolbox_orchestrator.worker_tasks._setup_django"), mock.patch(
            "toolbox_orchestrator.reconciler.tick", return_value=TickResult("tb-3", "creating")
        ), mock.patch("toolbox_orchestrator.jobs.enqueue_poll") as enqueue:
            poll_toolbox_status("tb-3", "tok")
        enqueue.assert_called_once_with("tb-3", "tok", delay_seconds=15)

    def test_loop_ends_on_settled_status(self):
        jobs.cache.set("toolbox-poll-loop:tb-4", "tok")
        with mock.patch("toolbox_orchestrator.worker_tasks._setup_django"), mock.patch(
            "toolbox_orchestrator.reconciler.tick", return_value=TickResult("tb-4", "error_provisioning")
        ), mock.patch("toolbox_orchestrator.jobs.enqueue_poll") as enqueue:
            poll_toolbox_status("tb-4", "tok")
        enqueue.assert_not_called()
        self.assertIsNone(jobs.cache.get("toolbox-poll-loop:tb-4"))

    @override_settings(TOOLBOX_ASYNC_JOBS_MODE="redis")
    def test_redis_mode_enqueues_delayed_job(self):
        queue = mock.Mock()
        queue.enqueue_in.return_value = mock.Mock(id="job-1")
        with mock.patch.object(jobs, "_queue", return_value=queue):
            self.assertEqual(jobs.enqueue_poll("tb-5", "tok", delay_seconds=15), "job-1")
        self.assertEqual(queue.enqueue_in.call_args.args[1], jobs.POLL_TASK)

    @override_settings(TOOLBOX_POLL_INTERVAL_SECONDS=15)
    def test_failed_tick_keeps_the_loop_alive(self):
        jobs.cache.set("toolbox-poll-loop:tb-6", "tok")
        with mock.patch("toolbox_orchestrator.worker_tasks._setup_django"), mock.patch(
            "toolbox_orchestrator.reconciler.tick", side_effect=RuntimeError("database went away")
        ), mock.patch("toolbox_orchestrator.jobs.enqueue_poll") as enqueue:
            with self.assertLogs("toolbox_orchestrator.worker_tasks", level="ERROR"):
                self.assertEqual(poll_toolbox_status("tb-6", "tok"), "error")
        enqueue.assert_called_once_with("tb-6", "tok", delay_seconds=15)
        self.assertTrue(jobs.is_current_loop("tb-6", "tok"))

    @override_settings(TOOLBOX_ASYNC_JOBS_MODE="inprocess", TOOLBOX_POLL_INTERVAL_SECONDS=15)
    def test_inprocess_loops_release_the_pool_between_ticks(self):
        toolbox_ids = [f"tb-pool-{index}" for index in range(6)]
        executor = mock.Mock()
        executor.submit.side_effect = lambda fn, *args: fn(*args)
        with mock.patch.object(jobs, "_executor", executor), mock.patch.object(
            jobs.threading, "Timer"
        ) as timer, mock.patch("django.db.close_old_connections"), mock.patch(
            "toolbox_orchestrator.reconciler.tick", side_effect=lambda toolbox_id: TickResult(toolbox_id, "active")
        ) as tick:
            for toolbox_id in toolbox_ids:
                jobs.schedule_reconcile(toolbox_id)

        self.assertEqual([call.args[0] for call in tick.call_args_list], toolbox_ids)
        self.assertEqual(timer.call_count, len(toolbox_ids))
        for call, toolbox_id in zip(timer.call_args_list, toolbox_ids):
            self.assertEqual(call.args[0], 15)
            self.assertEqual(call.kwargs["args"][1], toolbox_id)
        self.assertEqual(timer.return_value.start.call_count, len(toolbox_ids))


class ReconcileCommandTests(TestCase):
    def test_command_ticks_polled_toolboxes(self):
        user = get_user_model().objects.create_user(username="owner", password="pass")
        live = ToolboxRecord.objects.create(owner=user, name="a", region="us-east-1", size_class="small", status="active")
        ToolboxRecord.objects.create(owner=user, name="b", region="us-east-1", size_class="small", status="deprovisioned")
        with mock.patch(
            "toolbox_orchestrator.management.commands.reconcile_toolboxes.tick",
            return_value=TickResult(str(live.id), "active"),
        ) as tick:
            call_command("reconcile_toolboxes")
        tick.assert_called_once_with(live.id)


class BootstrapScriptTests(TestCase):
    def test_script_installs_agent_under_systemd(self):
        script = build_bootstrap_script(agent_token="tok-123", agent_image="registry.example/agent:1", agent_port=30000)
        self.assertTrue(script.startswith("#!/bin/bash"))
        self.assertIn("registry.example/agent:1", script)
        self.assertIn("Restart=always", script)
        self.assertIn("/var/run/docker.sock", script)
        self.assertIn("30000", script)
