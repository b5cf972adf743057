"""
Logging setup for the deck feed engine.

Console output is colored per level and prints the component name without
the ``deckfeed.`` prefix. With ``LOG_DIR`` set, records also go to a
midnight-rotating ``deckfeed.log`` and WARNING+ to ``errors.log``.
``LOG_JSON=true`` switches every handler to one JSON object per line;
fields passed as ``extra={'extra_data': {...}}`` end up under ``extra``.
"""

import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

PLAIN_FORMAT = '%(asctime)s | %(levelname)-7s | %(name)s | %(message)s'

# Per-component floor levels; the ensurer logs every tick at DEBUG
COMPONENT_LEVELS: Dict[str, int] = {
    'deckfeed.pipeline.supply_ensurer': logging.DEBUG,
    'deckfeed.pipeline.presentation_loop': logging.INFO,
    'aiohttp': logging.WARNING,
    'aiosqlite': logging.WARNING,
}


def _short_name(name: str) -> str:
    return name[len('deckfeed.'):] if name.startswith('deckfeed.') else name


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record):
        entry = {
            'ts': datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'msg': record.getMessage(),
            'where': f"{record.module}:{record.funcName}:{record.lineno}",
        }
        extra = getattr(record, 'extra_data', None)
        if extra:
            entry['extra'] = extra
        if record.exc_info:
            entry['exc'] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ColoredConsoleFormatter(logging.Formatter):
    LEVEL_COLORS = {
        logging.DEBUG: '\033[2;37m',
        logging.INFO: '\033[32m',
        logging.WARNING: '\033[33m',
        logging.ERROR: '\033[31m',
        logging.CRITICAL: '\033[1;31m',
    }
    RESET = '\033[0m'

    def format(self, record):
        color = self.LEVEL_COLORS.get(record.levelno, '')
        stamp = self.formatTime(record, '%H:%M:%S')
        line = f"{color}{stamp} {record.levelname[0]} {_short_name(record.name):<26} {record.getMessage()}{self.RESET}"
        if record.exc_info:
            line += '\n' + self.formatException(record.exc_info)
        return line


def setup_logging(
    log_level: str = "INFO",
    log_dir: Optional[str] = None,
    enable_file_logging: bool = True,
    enable_structured_logging: bool = False
) -> None:
    """
    Configure the root logger.

    Args:
        log_level: Console level name (DEBUG, INFO, ...)
        log_dir: Directory for log files; defaults to ./logs
        enable_file_logging: Write deckfeed.log and errors.log
        enable_structured_logging: Use JSON lines on every handler
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(StructuredFormatter() if enable_structured_logging else ColoredConsoleFormatter())
    root.addHandler(console)

    if enable_file_logging:
        log_path = Path(log_dir or 'logs')
        log_path.mkdir(parents=True, exist_ok=True)
        file_formatter = StructuredFormatter() if enable_structured_logging else logging.Formatter(PLAIN_FORMAT)

        rotating = logging.handlers.TimedRotatingFileHandler(
            log_path / 'deckfeed.log', when='midnight', backupCount=7, encoding='utf-8'
        )
        rotating.setLevel(logging.DEBUG)
        rotating.setFormatter(file_formatter)
        root.addHandler(rotating)

        errors = logging.FileHandler(log_path / 'errors.log', encoding='utf-8')
        errors.setLevel(logging.WARNING)
        errors.setFormatter(file_formatter)
        root.addHandler(errors)

    for name, component_level in COMPONENT_LEVELS.items():
        logging.getLogger(name).setLevel(component_level)


def log_stage_metrics(
    logger: logging.Logger,
    stage: str,
    input_count: int,
    output_count: int,
    duration_ms: float,
    **extra_data
) -> None:
    """Log how many items a stage took in and kept, with timing."""
    dropped = max(input_count - output_count, 0)
    metrics = dict(extra_data)
    metrics.update(
        stage=stage,
        input_count=input_count,
        output_count=output_count,
        duration_ms=round(duration_ms, 1),
        reduction_rate=(dropped / input_count) if input_count else 0.0,
    )
    logger.info(f"📊 {stage}: kept {output_count}/{input_count} in {duration_ms:.1f}ms",
                extra={'extra_data': metrics})
