import sys

from loguru import logger


def setup_logger(level: str = "INFO", service: str = "imagepipe"):
    """Loguru 기본 설정. 서비스 시작 시 한 번 호출."""
    logger.remove()
    logger.configure(extra={"service": service})
    logger.add(
        sys.stderr,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<magenta>{extra[service]}</magenta> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        ),
        level=level.upper(),
    )
    return logger
