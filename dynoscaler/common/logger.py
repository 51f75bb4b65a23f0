import os
import logging
import json

# LogRecord attributes that are not user supplied extras
RESERVED_ATTRS = {
    'args', 'asctime', 'created', 'exc_info', 'exc_text', 'filename',
    'funcName', 'id', 'levelname', 'levelno', 'lineno', 'module',
    'msecs', 'message', 'msg', 'name', 'pathname', 'process',
    'processName', 'relativeCreated', 'stack_info', 'taskName', 'thread', 'threadName'
}


def setup_logging(level=None):
    """
    Configure the root logger for a long running scaler process.

    Locally records are written as plain text lines. On a dyno they are written
    as one JSON object per line so a log drain can index the target fields.

    Args:
        level: Level name, LOG_LEVEL from the environment when omitted (INFO by default)
    """
    if level is None:
        level = os.environ.get('LOG_LEVEL', 'INFO').upper()

    numeric_level = getattr(logging, level, logging.INFO)

    logging.basicConfig(
        level=numeric_level,
        format='%(asctime)s [%(levelname)s] %(name)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Heroku sets DYNO in every dyno's environment
    if os.environ.get('DYNO') is not None:
        root_logger = logging.getLogger()
        for handler in root_logger.handlers:
            handler.setFormatter(JsonFormatter())

    # requests logs every connection through urllib3
    logging.getLogger('urllib3').setLevel(logging.WARNING)

    logging.debug("Logging initialized")


class JsonFormatter(logging.Formatter):
    """
    Render a record as a single JSON line for the Heroku log drain.

    Fields passed through ``extra`` (heroku_app, queue_name, process_type,
    new_quantity) become top level keys.
    """

    def format(self, record):
        log_record = {
            'timestamp': self.formatTime(record, self.datefmt),
            'level': record.levelname,
            'name': record.name,
            'message': record.getMessage(),
            'file': record.pathname,
            'line': record.lineno,
            'function': record.funcName
        }

        if record.exc_info:
            log_record['exception'] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in RESERVED_ATTRS:
                log_record[key] = value

        return json.dumps(log_record, default=str)
