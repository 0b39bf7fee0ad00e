"""
giftdesk/utils/logging.py
─────────────────────────
Configures logging for the app: rotating file + stdout.

app.logger is shared by every app built from this package (tests build
many), so handlers are named and replaced rather than stacked.
"""
import os
import logging
from logging.handlers import RotatingFileHandler
from flask import request, has_request_context


FILE_HANDLER   = 'giftdesk-file'
STREAM_HANDLER = 'giftdesk-stdout'


class RequestFormatter(logging.Formatter):
    """
    Adds the request URL and client IP to each record when
    logging from inside a request.
    """
    def format(self, record):
        if has_request_context():
            record.url = request.url
            record.remote_addr = request.remote_addr
        else:
            record.url = None
            record.remote_addr = None
        return super().format(record)


def _install(logger, handler, name):
    for old in [h for h in logger.handlers if h.get_name() == name]:
        logger.removeHandler(old)
        old.close()
    handler.set_name(name)
    logger.addHandler(handler)


def setup_logging(app):
    """
    logs/app.log (5MB x 5 backups) when LOG_TO_FILE is on, plus stdout.
    File format: timestamp | level | logger | ip | url | message
    """
    level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)

    if app.config.get('LOG_TO_FILE', True):
        try:
            log_dir = os.path.join(app.root_path, '..', 'logs')
            os.makedirs(log_dir, exist_ok=True)

            file_handler = RotatingFileHandler(
                os.path.join(log_dir, 'app.log'),
                maxBytes=5 * 1024 * 1024,
                backupCount=5
            )
            file_handler.setFormatter(RequestFormatter(
                '%(asctime)s | %(levelname)s | %(name)s | %(remote_addr)s | %(url)s | %(message)s'
            ))
            file_handler.setLevel(level)
            _install(app.logger, file_handler, FILE_HANDLER)
        except OSError:
            app.logger.warning("File logging unavailable (read-only filesystem?), using stdout only")

    # Stdout is what gunicorn and the hosting platform collect
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(RequestFormatter(
        '%(asctime)s | %(levelname)s | %(remote_addr)s | %(message)s'
    ))
    stream_handler.setLevel(level)
    _install(app.logger, stream_handler, STREAM_HANDLER)

    app.logger.setLevel(level)
    app.logger.info(f"{app.config.get('APP_NAME', 'GiftDesk')} {app.config.get('APP_VERSION', '')} startup")
