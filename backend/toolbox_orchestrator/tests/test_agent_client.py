from unittest import mock

import requests
from django.test import SimpleTestCase

from toolbox_orchestrator.agent_client import AgentClient
from toolbox_orchestrator.errors import AgentError, ToolNotFound


def _response(status_code=200, payload=None, text=""):
    response = mock.Mock(status_code=status_code, text=text, content=b"{}" if payload is not None else b"")
    response.json.return_value = payload
    return response


class AgentClientTests(SimpleTestCase):
    def setUp(self):
        self.client_ = AgentClient("203.0.113.10", "secret-token")

    @mock.patch("toolbox_orchestrator.agent_client.requests.request")
    def test_status_sends_bearer_token_with_bounded_timeout(self, mock_request):
        mock_request.return_value = _response(payload={"status": "ok"})
        self.assertEqual(self.client_.status(), {"status": "ok"})
        kwargs = mock_request.call_args.kwargs
        self.assertEqual(kwargs["url"], "http://203.0.113.10:30000/status")
        self.assertEqual(kwargs["headers"], {"Authorization": "Bearer secret-token"})
        self.assertLessEqual(kwargs["timeout"], 10)

    def test_timeout_is_capped(self):
        self.assertEqual(AgentClient("203.0.113.10", "t", timeout=60).timeout, 10.0)

    @mock.patch("toolbox_orchestrator.agent_client.requests.request", side_effect=requests.ConnectTimeout("slow"))
    def test_network_failure_is_agent_error(self, _request):
        with self.assertRaises(AgentError) as ctx:
            self.client_.status()
        self.assertIn("ConnectTimeout", str(ctx.exception))
        self.assertNotIn("secret-token", str(ctx.exception))

    @mock.patch("toolbox_orchestrator.agent_client.requests.request")
    def test_error_statuses(self, mock_request):
        mock_request.return_value = _response(status_code=404, text="not found")
        with self.assertRaises(ToolNotFound):
            self.client_.start_tool("web")
        mock_request.return_value = _response(status_code=502, text="docker down")
        with self.assertRaises(AgentError) as ctx:
            self.client_.status()
        self.assertEqual(ctx.exception.status_code, 502)

    def test_missing_address(self):
        with self.assertRaises(AgentError):
            AgentClient("", "t")
