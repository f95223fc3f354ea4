import sys
from pathlib import Path

from loguru import logger

LOG_FILE = "macro-arena.log"
ERROR_LOG_FILE = "macro-arena.errors.log"
JSON_LOG_FILE = "macro-arena.jsonl"

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}:{function}</cyan> | "
    "{message}"
)

FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}"


def setup_logging(
    log_level: str = "INFO",
    log_dir: Path | None = Path("db/logs"),
    json_logs: bool = False,
) -> None:
    """
    Configure loguru sinks for a backtest session.

    Args:
        log_level: Minimum level for console and run log
        log_dir: Directory for file sinks; None logs to stderr only
        json_logs: Also write one JSON record per line for post-run analysis
    """
    logger.remove()

    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=log_level, colorize=True)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)

        logger.add(
            log_dir / LOG_FILE,
            format=FILE_FORMAT,
            level=log_level,
            rotation="10 MB",
            retention="7 days",
            compression="zip",
        )
        # Model failures only, kept across runs for triage
        logger.add(
            log_dir / ERROR_LOG_FILE,
            format=FILE_FORMAT,
            level="ERROR",
            rotation="5 MB",
            retention=5,
        )
        if json_logs:
            logger.add(
                log_dir / JSON_LOG_FILE,
                level=log_level,
                serialize=True,
                rotation="10 MB",
                retention="7 days",
            )

    logger.debug(f"Logging configured: level={log_level}, dir={log_dir}, json={json_logs}")
