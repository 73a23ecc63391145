"""
Structured Logging Configuration

This module configures structured logging using the 'structlog' library.
It sets up processors for adding timestamps, log levels, the guardian session
ID, and renders logs in JSON (default) or colorized console format based on env.
"""

import os
import logging
import sys
import contextvars
import uuid
import time

import structlog
from structlog import dev as structlog_dev
from logging.handlers import RotatingFileHandler

# One guardian session spans a toggle-on to the matching toggle-off
session_id_var = contextvars.ContextVar('guardian_session_id', default=None)

SERVICE_NAME = 'halo-guardian'


def get_session_id():
    """Get the current guardian session ID."""
    return session_id_var.get()


def set_session_id(value=None):
    """Set the guardian session ID, generating one if not given."""
    if value is None:
        value = uuid.uuid4().hex[:12]
    session_id_var.set(value)
    return value


def add_session_id(logger, method_name, event_dict):
    """Add guardian session ID to the log record."""
    session_id = get_session_id()
    if session_id:
        event_dict['session_id'] = session_id
    return event_dict


def add_service_context(logger, method_name, event_dict):
    """Add service context to the log record."""
    event_dict['service'] = SERVICE_NAME
    component = event_dict.get('logger')
    if not component:
        component = getattr(getattr(logger, 'logger', None), 'name', None) or getattr(logger, 'name', 'unknown')
    event_dict['component'] = component
    return event_dict


_SENSITIVE_KEYS = {
    'api_key', 'apikey', 'token', 'access_token', 'auth_token', 'bearer',
    'password', 'passwd', 'authorization', 'secret', 'credential', 'credentials',
}


def sanitize_secrets(logger, method_name, event_dict):
    """
    Redact sensitive values from log events.

    Keys are matched after lowercasing and stripping '_' and '-', either
    exactly or as a suffix (so 'ollama_api_key' is redacted but 'passthrough'
    is not). Strings keep their first two characters for debugging.
    """
    normalized_patterns = {k.replace('_', '').replace('-', '') for k in _SENSITIVE_KEYS}

    def is_sensitive(key):
        key_normalized = str(key).lower().replace('_', '').replace('-', '')
        return any(key_normalized == p or key_normalized.endswith(p) for p in normalized_patterns)

    def redact_value(value):
        if value is None or isinstance(value, bool):
            return value
        if isinstance(value, str):
            if not value:
                return ''
            if len(value) > 4:
                return f"{value[:2]}***REDACTED***"
            return "***REDACTED***"
        return "***REDACTED***"

    def sanitize_dict(d):
        sanitized = {}
        for key, value in d.items():
            if is_sensitive(key):
                sanitized[key] = redact_value(value)
            elif isinstance(value, dict):
                sanitized[key] = sanitize_dict(value)
            else:
                sanitized[key] = value
        return sanitized

    return sanitize_dict(event_dict)


def configure_logging(log_level="INFO", log_to_file=False, log_file_path="halo.log", service_name=SERVICE_NAME):
    """
    Set up structured logging.

    Environment overrides (optional):
      - LOG_LEVEL: debug|info|warning|error|critical (default: INFO)
      - LOG_FORMAT: json|console (default: json)
      - LOG_COLOR:  0|1 (console only; default: 1)
      - LOG_TO_FILE: 0|1 (default: 0)
      - LOG_FILE_PATH: path or directory (default: halo.log)
      - LOG_SHOW_TRACEBACKS: auto|always|never (default: auto, debug only)
    """
    env_level = os.getenv("LOG_LEVEL")
    if env_level:
        log_level = env_level.upper()
    raw_to_file = os.getenv("LOG_TO_FILE")
    if raw_to_file is not None:
        log_to_file = raw_to_file.strip().lower() in ("1", "true", "yes")
    log_file_path = os.getenv("LOG_FILE_PATH", log_file_path)
    log_format = os.getenv("LOG_FORMAT", "json").strip().lower()
    log_color = os.getenv("LOG_COLOR", "1").strip() not in ("0", "false", "False")

    log_level_upper = log_level.upper() if isinstance(log_level, str) else logging.getLevelName(log_level)
    tb_mode = os.getenv("LOG_SHOW_TRACEBACKS", "auto").strip().lower()
    if tb_mode == "always":
        show_tracebacks = True
    elif tb_mode == "never":
        show_tracebacks = False
    else:
        show_tracebacks = (log_level_upper == "DEBUG")

    def suppress_exc_info_if_disabled(logger, method_name, event_dict):
        """Remove exc_info from event when tracebacks are disabled by policy."""
        if not show_tracebacks and event_dict.get("exc_info"):
            event_dict.pop("exc_info", None)
        return event_dict

    if isinstance(log_level, str):
        level_value = getattr(logging, log_level_upper, logging.INFO)
    else:
        level_value = int(log_level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            add_service_context,
            add_session_id,
            sanitize_secrets,
            suppress_exc_info_if_disabled,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = structlog_dev.ConsoleRenderer(colors=log_color) if log_format == "console" else structlog.processors.JSONRenderer()

    processor_formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=[
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
        ],
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level_value)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(processor_formatter)
    root_logger.addHandler(console_handler)

    if log_to_file:
        try:
            ts = time.strftime("%Y%m%d-%H%M%S")
            path = log_file_path
            if path.endswith(os.sep) or os.path.isdir(path):
                path = os.path.join(path, f"{service_name}-{ts}.log")
            elif "{ts}" in path:
                path = path.replace("{ts}", ts)
            dirpath = os.path.dirname(path)
            if dirpath:
                os.makedirs(dirpath, exist_ok=True)
            file_handler = RotatingFileHandler(path, maxBytes=10 * 1024 * 1024, backupCount=5)
            file_handler.setFormatter(processor_formatter)
            root_logger.addHandler(file_handler)
            get_logger(__name__).info("File logging configured", log_file_path=path)
        except OSError as e:
            get_logger(__name__).warning(
                "File logging disabled due to error; continuing with console only",
                error=str(e),
                configured_path=log_file_path,
            )

    # Reduce noisy third-party loggers
    logging.getLogger('aiohttp').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)


def get_logger(name: str):
    """Get a structlog logger."""
    return structlog.get_logger(name)
