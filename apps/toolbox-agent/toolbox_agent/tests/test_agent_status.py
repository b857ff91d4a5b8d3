from unittest import mock

from docker.errors import DockerException

from toolbox_agent.routes import status as status_routes


def test_status_reports_metrics_and_managed_tools(agent, fake_docker, auth_headers):
    fake_docker.add("alpha", status="running")
    fake_docker.add("beta", status="exited")
    fake_docker.add("stray", managed=False)
    with mock.patch.object(status_routes, "collect_metrics", return_value={"cpu_percent": 3.5}):
        resp = agent.get("/status", headers=auth_headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["metrics"] == {"cpu_percent": 3.5}
    assert [(item["instance_name"], item["status"]) for item in body["tools"]] == [
        ("alpha", "running"),
        ("beta", "exited"),
    ]


def test_status_is_an_error_when_docker_is_unavailable(agent, fake_docker, auth_headers):
    fake_docker.containers.list = mock.Mock(side_effect=DockerException("socket missing"))
    with mock.patch.object(status_routes, "collect_metrics", return_value={}):
        resp = agent.get("/status", headers=auth_headers)
    assert resp.status_code == 502
    assert resp.json()["error"] == "RuntimeFailure"


def test_collect_metrics_shape():
    from toolbox_agent.metrics import collect_metrics

    metrics = collect_metrics()
    for key in ("cpu_percent", "memory_total_bytes", "disk_percent", "uptime_seconds"):
        assert key in metrics
