import logging
import os
import sys
from pathlib import Path
from typing import Optional


def setup_logging(
    level: Optional[str] = None,
    log_file: Optional[Path] = None,
) -> logging.Logger:
    """
    Configura el logger "golfleague".

    Nivel desde LOG_LEVEL (por defecto INFO). Consola siempre;
    fichero solo si se pasa log_file.
    """
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()

    logger = logging.getLogger("golfleague")
    logger.setLevel(level)
    logger.handlers = []

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(logging.Formatter("%(levelname)s: %(name)s: %(message)s"))
    logger.addHandler(console)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_file)
        fh.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        logger.addHandler(fh)

    return logger
