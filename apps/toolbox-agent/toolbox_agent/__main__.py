import os

import uvicorn


def main() -> None:
    uvicorn.run(
        "toolbox_agent.main:app",
        host=os.environ.get("TOOLBOX_AGENT_HOST", "0.0.0.0"),
        port=int(os.environ.get("TOOLBOX_AGENT_PORT", "30000")),
        log_level=os.environ.get("TOOLBOX_AGENT_LOG_LEVEL", "info").lower(),
    )


if __name__ == "__main__":
    main()
