import sys

from loguru import logger

CONSOLE_FORMAT = "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | {name} - {message}"


def setup(level: str = "INFO", log_file: str | None = None) -> None:
    """
    Replace loguru's default sink with a stderr sink at `level` and,
    if `log_file` is given, a rotating DEBUG file sink.
    """
    logger.remove()
    logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT)

    if log_file:
        logger.add(
            log_file,
            level="DEBUG",
            rotation="5 MB",
            retention=3,
            encoding="utf-8",
            enqueue=True,
        )
