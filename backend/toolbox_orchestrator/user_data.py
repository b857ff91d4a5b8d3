import shlex

BOOTSTRAP_LOG = "/var/log/toolbox-bootstrap.log"
AGENT_SERVICE = "toolbox-agent"
AGENT_ENV_FILE = "/etc/toolbox-agent/agent.env"


def build_bootstrap_script(*, agent_token: str, agent_image: str, agent_port: int) -> str:
    """Cloud-init script that installs Docker and runs the Agent under systemd.

    The Agent container is started with ``--rm`` and supervised by a unit with
    ``Restart=always``; the Agent exits on ``/restart`` and ``/redeploy`` and
    systemd brings it back.
    """
    image = shlex.quote(agent_image)
    port = int(agent_port)
    script = f"""#!/bin/bash
set -euo pipefail

LOG_FILE={BOOTSTRAP_LOG}
exec > >(tee -a $LOG_FILE) 2>&1

if command -v apt-get >/dev/null 2>&1; then
  apt-get update
  apt-get install -y docker.io curl
elif command -v dnf >/dev/null 2>&1; then
  dnf install -y docker
  if ! command -v curl >/dev/null 2>&1; then
    dnf install -y curl --allowerasing || dnf install -y curl-minimal
  fi
elif command -v yum >/dev/null 2>&1; then
  yum install -y docker curl
fi
systemctl enable docker
systemctl start docker

mkdir -p /etc/toolbox-agent
umask 077
cat > {AGENT_ENV_FILE} <<'AGENT_ENV'
TOOLBOX_AGENT_TOKEN={agent_token}
TOOLBOX_AGENT_PORT={port}
TOOLBOX_AGENT_IMAGE={agent_image}
TOOLBOX_AGENT_SERVICE={AGENT_SERVICE}
TOOLBOX_AGENT_DATA_ROOT=/host
AGENT_ENV
chmod 600 {AGENT_ENV_FILE}
umask 022

docker pull {image}

cat > /etc/systemd/system/{AGENT_SERVICE}.service <<'UNIT'
[Unit]
Description=Toolbox management agent
After=docker.service
Requires=docker.service

[Service]
ExecStartPre=-/usr/bin/docker rm -f {AGENT_SERVICE}
ExecStart=/usr/bin/docker run --rm --name {AGENT_SERVICE} -p {port}:{port} --env-file {AGENT_ENV_FILE} -v /var/run/docker.sock:/var/run/docker.sock -v /:/host:ro {image}
ExecStop=/usr/bin/docker stop {AGENT_SERVICE}
Restart=always
RestartSec=5

[Install]
WantedBy=multi-user.target
UNIT

systemctl daemon-reload
systemctl enable {AGENT_SERVICE}
systemctl start {AGENT_SERVICE}

for i in $(seq 1 60); do
  if curl -fsS http://localhost:{port}/health >/dev/null 2>&1; then
    echo "toolbox agent is up"
    exit 0
  fi
  sleep 5
done

echo "toolbox agent did not become healthy"
exit 1
"""
    return script
