"""Run the execution daemon: `python -m flowshapr.daemon`."""

import uvicorn

from flowshapr.config import DaemonSettings, configure_logging
from flowshapr.daemon.app import create_app


def main() -> None:
    settings = DaemonSettings.from_env()
    configure_logging(settings.log_level)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
