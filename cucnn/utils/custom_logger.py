import logging
import sys

_FORMAT = "%(asctime)s [%(levelname)s] %(name)s (%(label)s): %(message)s"


class _LabelFilter(logging.Filter):
    def __init__(self, label: str) -> None:
        super().__init__()
        self.label = label

    def filter(self, record: logging.LogRecord) -> bool:
        record.label = self.label
        return True


def get_logger(name: str, label: str, level="INFO") -> logging.Logger:
    """Returns a logger named ``name.label`` that writes to stderr with ``label`` stamped on every record.

    Calling this twice with the same name and label hands back the same, already configured, logger.

    :param name: usually the ``__name__`` of the calling module
    :type name: str
    :param label: a short human readable tag, e.g. "project info"
    :type label: str
    :param level: any level understood by :meth:`logging.Logger.setLevel`
    :type level: str|int
    :rtype: logging.Logger
    """
    logger = logging.getLogger(f"{name}.{label.replace(' ', '_')}")
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(_FORMAT))
        handler.addFilter(_LabelFilter(label))
        logger.addHandler(handler)
        logger.propagate = False
    return logger
