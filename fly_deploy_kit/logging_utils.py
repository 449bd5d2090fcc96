import logging
import sys


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def setup_logging(verbosity: int = 0, quiet: bool = False) -> None:
    level = logging.INFO
    if verbosity >= 1:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        stream=sys.stdout,
    )

    # -vv 미만에서는 boto/httpx 내부 로그를 숨긴다.
    noisy_level = logging.DEBUG if verbosity >= 2 else logging.WARNING
    for name in ("botocore", "boto3", "urllib3", "httpx", "httpcore"):
        logging.getLogger(name).setLevel(noisy_level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
