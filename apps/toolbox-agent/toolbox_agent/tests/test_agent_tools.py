def test_deploy_pulls_image_and_labels_container(agent, fake_docker, auth_headers):
    resp = agent.post(
        "/tools",
        headers=auth_headers,
        json={
            "instance_name": "web",
            "image": "nginx:1.27",
            "env": {"MODE": "prod"},
            "port_bindings": {"80/tcp": 8080},
        },
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["instance_name"] == "web"
    assert body["status"] == "running"
    assert body["ports"] == {"80/tcp": ["0.0.0.0:8080"]}
    assert fake_docker.images.pulled == ["nginx:1.27"]
    container = fake_docker.store[0]
    assert container.name == "toolbox-tool-web"
    assert container.labels == {"toolbox.managed": "true", "toolbox.instance": "web"}
    assert container.environment == {"MODE": "prod"}


def test_redeploy_of_same_name_replaces_container(agent, fake_docker, auth_headers):
    old = fake_docker.add("web", image="nginx:1.26")
    resp = agent.post("/tools", headers=auth_headers, json={"instance_name": "web", "image": "nginx:1.27"})
    assert resp.status_code == 201
    assert old.removed
    assert len(fake_docker.store) == 1
    assert resp.json()["image"] == "nginx:1.27"


def test_deploy_rejects_invalid_instance_name(agent, auth_headers):
    resp = agent.post("/tools", headers=auth_headers, json={"instance_name": "Bad Name", "image": "nginx"})
    assert resp.status_code == 422


def test_start_and_stop_report_runtime_status(agent, fake_docker, auth_headers):
    fake_docker.add("db", status="exited")
    resp = agent.post("/tools/db/start", headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "running"
    resp = agent.post("/tools/db/stop", headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "exited"


def test_unknown_tool_is_404(agent, auth_headers):
    for method, path in (("post", "/tools/ghost/start"), ("post", "/tools/ghost/stop"), ("delete", "/tools/ghost")):
        resp = getattr(agent, method)(path, headers=auth_headers)
        assert resp.status_code == 404
        assert resp.json()["error"] == "ToolNotFound"


def test_remove_tool(agent, fake_docker, auth_headers):
    fake_docker.add("cache")
    resp = agent.delete("/tools/cache", headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "removed"
    assert fake_docker.store == []


def test_list_tools_survives_restart_via_labels(agent, fake_docker, auth_headers):
    fake_docker.add("a")
    fake_docker.add("b", status="exited")
    resp = agent.get("/tools", headers=auth_headers)
    assert resp.status_code == 200
    assert [item["instance_name"] for item in resp.json()["tools"]] == ["a", "b"]
