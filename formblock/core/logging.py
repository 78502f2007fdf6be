from __future__ import annotations

from pathlib import Path
from typing import Any

from loguru import logger


def configure_logging() -> None:
    from formblock.core.config import get_settings

    logger.remove()
    log_format = "{time:YYYY-MM-DDTHH:mm:ss.SSSZ} | {level} | {message}\n{exception}"
    logger.add(sink=lambda msg: print(msg, end=""), format=log_format)

    settings = get_settings()
    log_path = settings.log_file_path
    if log_path:
        log_path = log_path.expanduser()
        if _ensure_log_path(log_path):
            try:
                logger.add(
                    str(log_path),
                    format=log_format,
                    level="INFO",
                    encoding="utf-8",
                    enqueue=True,
                )
            except OSError as exc:
                logger.warning(
                    f"LOG FILE DISABLED - unable to open file path={log_path} error={exc}"
                )


def _format_meta(meta: dict[str, Any]) -> str:
    return " ".join(f"{key}={meta[key]}" for key in sorted(meta))


def log_error(message: str, **meta) -> None:
    if meta:
        logger.bind(**meta).error(f"{message} | {_format_meta(meta)}")
    else:
        logger.error(message)


def log_info(message: str, **meta) -> None:
    if meta:
        logger.bind(**meta).info(f"{message} | {_format_meta(meta)}")
    else:
        logger.info(message)


def log_warning(message: str, /, **meta) -> None:
    if meta:
        logger.bind(**meta).warning(f"{message} | {_format_meta(meta)}")
    else:
        logger.warning(message)


def log_debug(message: str, **meta) -> None:
    if meta:
        logger.bind(**meta).debug(f"{message} | {_format_meta(meta)}")
    else:
        logger.debug(message)


def _ensure_log_path(path: Path) -> bool:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.warning(
            f"LOG FILE DISABLED - unable to create directory path={path.parent} "
            f"error={exc}"
        )
        return False
    return True


def log_audit_event(
    event_type: str,
    action: str,
    *,
    ip_address: str | None = None,
    setting: str | None = None,
    **extra_meta,
) -> None:
    """Record a privileged action such as a settings change or purge.

    Format: ``{event_type} {action} | ip={...} setting={...} [extra_meta]``

    Values of secrets must never be passed here; callers log the setting
    name and the normalised, non-sensitive value only.
    """
    meta: dict[str, Any] = {}
    if ip_address:
        meta["ip"] = ip_address
    if setting:
        meta["setting"] = setting
    meta.update(extra_meta)

    message = f"{event_type} {action}"
    if meta:
        message = f"{message} | {_format_meta(meta)}"
        logger.bind(**meta).info(message)
    else:
        logger.info(message)
