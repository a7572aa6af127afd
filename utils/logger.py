# utils/logger.py
from loguru import logger
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

STDOUT_FORMAT = "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | {level} | {message}"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level} | {message}"

logger.remove()

_stdout_sink_id = logger.add(
    sys.stdout,
    level="INFO",
    enqueue=True,
    format=STDOUT_FORMAT,
)


def setup_logging(level: str = "INFO", log_dir: Optional[str] = None) -> Optional[Path]:
    """
    Re-level the stdout sink and, when log_dir is given, add a rotating file sink.
    Returns the log file path (or None when only stdout is used).
    """
    global _stdout_sink_id
    logger.remove(_stdout_sink_id)
    _stdout_sink_id = logger.add(
        sys.stdout,
        level=level.upper(),
        enqueue=True,
        format=STDOUT_FORMAT,
    )

    if not log_dir:
        return None

    path = Path(log_dir)
    if not path.is_absolute():
        path = Path(__file__).resolve().parents[1] / path
    path.mkdir(parents=True, exist_ok=True)

    start_time = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = path / f"sync_{start_time}.log"

    logger.add(
        log_file,
        level="DEBUG",
        rotation="100 MB",
        retention="90 days",
        enqueue=True,
        encoding="utf-8",
        format=FILE_FORMAT,
    )
    logger.info(f"Logger initialized. Writing logs to {log_file}")
    return log_file
