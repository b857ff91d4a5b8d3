from unittest import mock

from django.contrib.auth import get_user_model
from django.test import TestCase, override_settings

from toolbox_orchestrator.errors import AgentError, InvalidTransition, RemoteCommandError
from toolbox_orchestrator.models import SSHKeyPair, ToolboxRecord
from toolbox_orchestrator.remediation import fallback_commands, redeploy_agent, remediate, restart_agent
from toolbox_orchestrator.remote_exec import CommandResult

SEQUENCE = "toolbox_orchestrator.remediation.execute_sequence"


class RemediationTests(TestCase):
    def setUp(self):
        self.user = get_user_model().objects.create_user(username="owner", password="pass")
        self.key = SSHKeyPair.objects.create(
            owner=self.user,
            key_name=f"toolyard-user-{self.user.pk}",
            public_key_reference="arn:public",
            private_key_reference="arn:private",
            fingerprint="SHA256:abc",
            provider_key_id=f"toolyard-user-{self.user.pk}",
        )
        self.record = ToolboxRecord.objects.create(
            owner=self.user,
            name="box",
            region="us-east-1",
            size_class="small",
            status="unresponsive",
            provider_host_id="i-abc",
            public_address="203.0.113.10",
            ssh_key=self.key,
        )
        patcher = mock.patch("toolbox_orchestrator.ssh_keys.load_private_key", return_value="PRIVATE-PEM")
        patcher.start()
        self.addCleanup(patcher.stop)

    def _ok(self, command):
        return CommandResult(True, "active\n", "", 0, command)

    def test_agent_success_skips_ssh(self):
        with mock.patch(
            "toolbox_orchestrator.remediation.AgentClient.restart", return_value={"status": "restarting"}
        ), mock.patch(SEQUENCE) as sequence:
            result = restart_agent(self.record.id)
        self.assertTrue(result.success)
        self.assertEqual(result.channel, "agent")
        sequence.assert_not_called()

    def test_agent_failure_falls_back_to_exactly_one_ssh_sequence(self):
        commands = fallback_commands("restart")
        with mock.patch(
            "toolbox_orchestrator.remediation.AgentClient.restart", side_effect=AgentError("agent unreachable")
        ), mock.patch(SEQUENCE, return_value=([self._ok(command) for command in commands], None)) as sequence:
            result = restart_agent(self.record.id)
        sequence.assert_called_once_with("203.0.113.10", commands, private_key_pem="PRIVATE-PEM")
        self.assertTrue(result.success)
        self.assertEqual(result.channel, "ssh")
        self.assertEqual(result.details["errors"], {"agent": "agent unreachable"})

    def test_ssh_step_failure_is_reported_not_masked(self):
        commands = fallback_commands("redeploy")
        failed = CommandResult(False, "", "pull access denied", 1, commands[0])
        with mock.patch(
            "toolbox_orchestrator.remediation.AgentClient.redeploy", side_effect=AgentError("agent returned HTTP 502")
        ), mock.patch(SEQUENCE, return_value=([failed], 0)) as sequence:
            result = redeploy_agent(self.record.id)
        self.assertEqual(sequence.call_count, 1)
        self.assertFalse(result.success)
        self.assertEqual(result.details["failed_step"], 1)
        self.assertIn("docker pull", result.message)
        self.assertEqual(set(result.details["errors"]), {"agent", "ssh"})

    def test_both_channels_unreachable(self):
        with mock.patch(
            "toolbox_orchestrator.remediation.AgentClient.restart", side_effect=AgentError("agent unreachable")
        ), mock.patch(SEQUENCE, side_effect=RemoteCommandError("SSH connection failed: timeout")):
            result = restart_agent(self.record.id)
        self.assertFalse(result.success)
        self.assertIsNone(result.channel)
        self.assertEqual(result.details["errors"]["ssh"], "SSH connection failed: timeout")

    def test_no_ssh_key_reports_failure(self):
        self.record.ssh_key = None
        self.record.save(update_fields=["ssh_key"])
        with mock.patch(
            "toolbox_orchestrator.remediation.AgentClient.restart", side_effect=AgentError("agent unreachable")
        ), mock.patch(SEQUENCE) as sequence:
            result = restart_agent(self.record.id)
        sequence.assert_not_called()
        self.assertFalse(result.success)

    def test_unknown_action_and_deleting_toolbox_are_rejected(self):
        with self.assertRaises(ValueError):
            remediate(self.record.id, "reboot")
        ToolboxRecord.objects.filter(id=self.record.id).update(status="deprovisioning")
        with self.assertRaises(InvalidTransition):
            restart_agent(self.record.id)

    @override_settings(TOOLBOX_AGENT_IMAGE="registry.example/agent:2")
    def test_fallback_commands(self):
        self.assertEqual(
            fallback_commands("redeploy"),
            [
                "sudo docker pull registry.example/agent:2",
                "sudo systemctl restart toolbox-agent",
                "systemctl is-active toolbox-agent",
            ],
        )
        self.assertEqual(fallback_commands("restart"), fallback_commands("redeploy")[1:])
