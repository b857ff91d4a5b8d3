from unittest import mock

from django.contrib.auth import get_user_model
from django.test import TestCase

from toolbox_orchestrator.errors import InvalidTransition, ToolboxConfigError, ToolNotFound
from toolbox_orchestrator.models import ToolboxRecord, ToolInstance
from toolbox_orchestrator.tools import deploy_tool, map_runtime_status, remove_tool, start_tool, stop_tool

CLIENT = "toolbox_orchestrator.tools.AgentClient"


class ToolOperationTests(TestCase):
    def setUp(self):
        self.user = get_user_model().objects.create_user(username="owner", password="pass")
        self.record = ToolboxRecord.objects.create(
            owner=self.user,
            name="box",
            region="us-east-1",
            size_class="small",
            status="active",
            public_address="203.0.113.10",
        )

    def _item(self, name, status, container_id="c1"):
        return {
            "instance_name": name,
            "container_id": container_id,
            "image": "nginx:1.27",
            "status": status,
            "ports": {"80/tcp": ["0.0.0.0:8080"]},
        }

    def test_status_mapping(self):
        self.assertEqual(map_runtime_status("running"), "running")
        self.assertEqual(map_runtime_status("exited"), "stopped")
        self.assertEqual(map_runtime_status("created"), "created")
        self.assertEqual(map_runtime_status("weird"), "error")
        self.assertEqual(map_runtime_status(None), "error")

    def test_deploy_records_agent_report(self):
        with mock.patch(f"{CLIENT}.deploy_tool", return_value=self._item("web", "running")) as deploy:
            instance = deploy_tool(self.record.id, "web", "nginx:1.27", port_bindings={"80/tcp": 8080})
        deploy.assert_called_once_with("web", "nginx:1.27", env=None, port_bindings={"80/tcp": 8080})
        self.assertEqual(instance.status, "running")
        self.assertEqual(instance.container_id, "c1")
        self.assertEqual(instance.port_bindings, {"80/tcp": ["0.0.0.0:8080"]})

    def test_created_container_has_no_container_id(self):
        with mock.patch(f"{CLIENT}.deploy_tool", return_value=self._item("web", "created")):
            instance = deploy_tool(self.record.id, "web", "nginx:1.27")
        self.assertIsNone(instance.container_id)

    def test_deploy_requires_active_toolbox_and_valid_name(self):
        with self.assertRaises(ToolboxConfigError):
            deploy_tool(self.record.id, "Bad Name", "nginx")
        ToolboxRecord.objects.filter(id=self.record.id).update(status="creating")
        with mock.patch(f"{CLIENT}.deploy_tool") as deploy, self.assertRaises(InvalidTransition):
            deploy_tool(self.record.id, "web", "nginx")
        deploy.assert_not_called()

    def test_start_requires_stopped_and_stop_requires_running(self):
        ToolInstance.objects.create(toolbox=self.record, instance_name="web", image_reference="nginx", status="running")
        with self.assertRaises(InvalidTransition):
            start_tool(self.record.id, "web")
        with mock.patch(f"{CLIENT}.stop_tool", return_value=self._item("web", "exited")):
            instance = stop_tool(self.record.id, "web")
        self.assertEqual(instance.status, "stopped")
        with self.assertRaises(InvalidTransition):
            stop_tool(self.record.id, "web")
        with mock.patch(f"{CLIENT}.start_tool", return_value=self._item("web", "running")):
            self.assertEqual(start_tool(self.record.id, "web").status, "running")

    def test_tool_unknown_to_agent_is_forgotten(self):
        ToolInstance.objects.create(toolbox=self.record, instance_name="web", image_reference="nginx", status="stopped")
        with mock.patch(f"{CLIENT}.start_tool", side_effect=ToolNotFound("tool not found on toolbox: web")):
            with self.assertRaises(ToolNotFound):
                start_tool(self.record.id, "web")
        self.assertFalse(ToolInstance.objects.filter(instance_name="web").exists())

    def test_untracked_tool_is_not_found(self):
        with self.assertRaises(ToolNotFound):
            stop_tool(self.record.id, "ghost")

    def test_remove_tolerates_missing_container(self):
        ToolInstance.objects.create(toolbox=self.record, instance_name="web", image_reference="nginx", status="running")
        with mock.patch(f"{CLIENT}.remove_tool", side_effect=ToolNotFound("gone")):
            instance = remove_tool(self.record.id, "web")
        self.assertEqual(instance.status, "removed")
        self.assertFalse(ToolInstance.objects.filter(instance_name="web").exists())
