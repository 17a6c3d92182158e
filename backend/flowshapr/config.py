"""Process settings, read from the environment (and a local `.env` if present)."""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_PORT = 3000
DEFAULT_EXECUTOR_ID = "executor-unknown"


@dataclass(frozen=True)
class DaemonSettings:
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    executor_id: str = DEFAULT_EXECUTOR_ID
    scratch_dir: Path = Path(tempfile.gettempdir()) / "flowshapr-flows"
    shutdown_delay_seconds: float = 1.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "DaemonSettings":
        load_dotenv()
        defaults = cls()
        return cls(
            host=os.getenv("HOST", defaults.host),
            port=int(os.getenv("PORT", str(defaults.port))),
            executor_id=os.getenv("EXECUTOR_ID") or defaults.executor_id,
            scratch_dir=Path(os.getenv("FLOW_SCRATCH_DIR") or defaults.scratch_dir),
            shutdown_delay_seconds=float(os.getenv("SHUTDOWN_DELAY_SECONDS", str(defaults.shutdown_delay_seconds))),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
