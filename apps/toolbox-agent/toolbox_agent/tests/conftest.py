import pytest
from docker.errors import NotFound
from fastapi.testclient import TestClient

from toolbox_agent.main import app
from toolbox_agent.runtime import get_docker

TOKEN = "agent-test-token"


class FakeContainer:
    def __init__(self, docker, name, image, labels, ports=None, environment=None):
        self.docker = docker
        self.name = name
        self.id = f"c{len(docker.store) + 1:011d}"
        self.short_id = self.id[:10]
        self.labels = labels
        self.status = "running"
        self.environment = environment or {}
        self.attrs = {
            "Config": {"Image": image},
            "NetworkSettings": {
                "Ports": {
                    port: [{"HostIp": "0.0.0.0", "HostPort": str(host)}] for port, host in (ports or {}).items()
                }
            },
        }
        self.removed = False

    def reload(self):
        if self.removed:
            raise NotFound("container gone")

    def start(self):
        self.status = "running"

    def stop(self, timeout=None):
        self.status = "exited"

    def remove(self, force=False, v=False):
        self.removed = True
        self.docker.store.remove(self)


class FakeContainers:
    def __init__(self, docker):
        self.docker = docker

    def list(self, all=False, filters=None):
        key, _, value = (filters or {}).get("label", "").partition("=")
        return [item for item in self.docker.store if item.labels.get(key) == value]

    def run(self, image, name, detach, environment, ports, labels, restart_policy):
        container = FakeContainer(self.docker, name, image, labels, ports, environment)
        self.docker.store.append(container)
        return container


class FakeImages:
    def __init__(self):
        self.pulled = []
        self.fail_with = None

    def pull(self, image):
        if self.fail_with is not None:
            raise self.fail_with
        self.pulled.append(image)


class FakeDocker:
    def __init__(self):
        self.store = []
        self.containers = FakeContainers(self)
        self.images = FakeImages()

    def add(self, instance_name, image="busybox:latest", status="running", managed=True):
        labels = {"toolbox.managed": "true", "toolbox.instance": instance_name} if managed else {}
        container = FakeContainer(self, f"toolbox-tool-{instance_name}", image, labels)
        container.status = status
        self.store.append(container)
        return container


@pytest.fixture
def fake_docker():
    return FakeDocker()


@pytest.fixture
def agent(monkeypatch, fake_docker):
    monkeypatch.setenv("TOOLBOX_AGENT_TOKEN", TOKEN)
    app.dependency_overrides[get_docker] = lambda: fake_docker
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {TOKEN}"}
