"""
Logging Configuration for the Payroll Computation & Snapshot Engine
Provides uniform logging for payroll runs, attendance freezes and compensation changes
"""

import logging
import logging.handlers
import os
import time
from typing import Optional

class PayrollLogFormatter(logging.Formatter):
    """Console formatter with color coded levels"""

    COLORS = {
        'DEBUG': '\033[36m',    # Cyan
        'INFO': '\033[32m',     # Green
        'WARNING': '\033[33m',  # Yellow
        'ERROR': '\033[31m',    # Red
        'CRITICAL': '\033[35m', # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        # Color a copy so file handlers sharing the record stay plain
        levelname = record.levelname
        color = self.COLORS.get(levelname, '')
        record.levelname = f"{color}{levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname

def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    enable_console: bool = True,
    enable_file_rotation: bool = True
):
    """Setup logging configuration"""

    # Create logs directory if it doesn't exist
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir, exist_ok=True)

    # Set log level
    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f'Invalid log level: {log_level}')

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Clear existing handlers
    root_logger.handlers.clear()

    console_formatter = PayrollLogFormatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    file_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    if enable_console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(console_formatter)
        root_logger.addHandler(console_handler)

    if log_file:
        if enable_file_rotation:
            # Rotating file handler (10MB max, keep 5 backups)
            file_handler = logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=10*1024*1024,  # 10MB
                backupCount=5
            )
        else:
            file_handler = logging.FileHandler(log_file)

        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)

    loggers = [
        'payroll_engine.compensation.resolver',
        'payroll_engine.compensation.ledger',
        'payroll_engine.attendance.service',
        'payroll_engine.payrolls.service',
    ]

    for logger_name in loggers:
        logger = logging.getLogger(logger_name)
        logger.setLevel(numeric_level)

    # SQL echo is controlled by the engine, keep the logger quiet otherwise
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)

    return root_logger

def log_payroll_operation(
    operation: str,
    tenant_id: Optional[str] = None,
    reference: Optional[str] = None,
    duration: Optional[float] = None,
    success: bool = True,
    details: Optional[dict] = None,
    logger: Optional[logging.Logger] = None
):
    """One line per payroll operation, e.g.

    ``PAYROLL OK - CALCULATE RUN | tenant=... | ref=2024-06 | 0.142s | processed=12``
    """
    logger = logger or logging.getLogger('payroll_engine.payrolls.service')

    parts = [f"PAYROLL {'OK' if success else 'FAILED'} - {operation.upper().replace('_', ' ')}"]
    if tenant_id:
        parts.append(f"tenant={tenant_id}")
    if reference:
        parts.append(f"ref={reference}")
    if duration is not None:
        parts.append(f"{duration:.3f}s")
    parts.extend(f"{key}={value}" for key, value in (details or {}).items())

    logger.log(logging.INFO if success else logging.ERROR, " | ".join(parts))

class PayrollOperationLogger:
    """Times a payroll operation (freeze, run calculation, revision approval)
    and logs its outcome, including the error when the block raises."""

    def __init__(
        self,
        operation: str,
        tenant_id: Optional[str] = None,
        reference: Optional[str] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.operation = operation
        self.tenant_id = tenant_id
        self.reference = reference
        self.logger = logger or logging.getLogger('payroll_engine.payrolls.service')
        self.details = {}
        self._started = None

    def __enter__(self):
        self._started = time.perf_counter()
        self.logger.debug(f"PAYROLL - {self.operation.upper()}: starting ({self.reference})")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.details['error'] = str(exc_val)

        log_payroll_operation(
            self.operation,
            self.tenant_id,
            self.reference,
            time.perf_counter() - self._started,
            exc_type is None,
            self.details,
            self.logger
        )
        return False

    def add_detail(self, key: str, value):
        self.details[key] = value

def init_logging():
    """Initialize logging configuration from settings"""
    from .config import settings

    setup_logging(
        log_level=settings.log_level,
        log_file=settings.log_file,
        enable_console=True,
        enable_file_rotation=settings.log_file_rotation
    )
