import os
import logging
import logging.handlers
from typing import Dict, Any

def configure_logging(config: Dict[str, Any]):
    """Configure logging with a rotating file handler and optional console output."""
    log_config = config.get('logging', {})
    log_level = getattr(logging, str(log_config.get('level', 'INFO')).upper(), logging.INFO)
    log_file = log_config.get('file', 'logs/association-finder.log')
    if isinstance(log_file, dict):
        log_file = log_file.get('path', 'logs/association-finder.log')
    max_size_mb = log_config.get('max_size_mb', 10)
    backup_count = log_config.get('backup_count', 5)
    console_enabled = log_config.get('console', True)

    # Only the package logger is touched; the host owns the root logger
    package_logger = logging.getLogger('association_finder')
    package_logger.setLevel(log_level)
    package_logger.handlers = []

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count
        )
        file_formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        package_logger.addHandler(file_handler)

    if console_enabled:
        console_handler = logging.StreamHandler()
        console_formatter = logging.Formatter(
            '%(levelname)s - %(message)s'
        )
        console_handler.setFormatter(console_formatter)
        package_logger.addHandler(console_handler)

    return package_logger
