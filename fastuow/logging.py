import logging

from uvicorn.logging import DefaultFormatter


def get_logger(name: str, log_level=logging.INFO):
    """``fastuow`` 모듈에서 공통으로 사용하는 로거를 리턴합니다.

    핸들러는 처음 한 번만 붙입니다.
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        logger.setLevel(log_level)
        ch = logging.StreamHandler()
        ch.setFormatter(DefaultFormatter(fmt="%(levelprefix)s %(name)s: %(message)s"))
        logger.addHandler(ch)

    return logger
