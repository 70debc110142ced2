"""
Structured logging for the image bank.
Bank, media and review operations log through one shared logger instance.
"""

import logging
from typing import Any, Dict, List, Optional


class StructuredLogger:
    """Structured logger for bank, media and review operations."""

    def __init__(self, name: str = "imagebank"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None, level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.log(level, message)

    def log_bank_operation(self, operation: str, status: str = "success", details: Dict[str, Any] = None, level: int = logging.INFO):
        """Log an image bank operation (load, store, search, sync)."""
        self.log_operation(f"bank.{operation}", status, details, level)

    def log_media_event(self, event: str, status: str = "success", details: Dict[str, Any] = None, level: int = logging.INFO):
        """Log a media client event (provider search, cache hit, plan execution)."""
        log_details = {}
        if details:
            for k, v in details.items():
                # Queries can be long LLM-generated prompts
                if k == "query" and isinstance(v, str) and len(v) > 80:
                    log_details[k] = v[:77] + "..."
                else:
                    log_details[k] = v

        self.log_operation(f"media.{event}", status, log_details, level)

    def log_review_event(self, action: str, entry_id: str, details: Dict[str, Any] = None, status: str = "success"):
        """Log a review workflow mutation."""
        log_details = {"entry_id": entry_id}
        if details:
            log_details.update(details)

        self.log_operation(f"review.{action}", status, log_details)

    def log_task_failure(self, task_name: str, error: BaseException, details: Dict[str, Any] = None):
        """Log a background task that raised."""
        log_details = {"task": task_name, "error": str(error)[:200]}
        if details:
            log_details.update(details)

        self.log_operation("task.failed", "error", log_details, logging.ERROR)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)

# Global logger instance
logger = StructuredLogger()


def redact_query_params(url: str, sensitive_params: Optional[List[str]] = None) -> str:
    """Strip credential-bearing query parameters from URLs before logging."""
    if sensitive_params is None:
        sensitive_params = ['client_id', 'key', 'api_key', 'token', 'signature']

    if "?" not in url:
        return url

    base, query = url.split("?", 1)
    kept = []
    for pair in query.split("&"):
        name = pair.split("=", 1)[0]
        if name.lower() in sensitive_params:
            kept.append(f"{name}=[REDACTED]")
        else:
            kept.append(pair)
    return base + "?" + "&".join(kept)
