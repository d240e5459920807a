"""
Security Event Logging Module

Provides structured logging for security-related events including:
- Denied reads of indigenous-knowledge records
- Granted reads of sensitive records
- Consent revocations
- Authentication failures and rate-limit rejections

SECURITY: Ensures user-supplied data is sanitized before logging.
"""

import logging
import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any
from dataclasses import dataclass, field as dataclass_field

from log_utils import sanitize_for_logging


@dataclass
class SecurityEvent:
    """Structured security event for logging"""
    event_type: str  # e.g., ACCESS_DENIED, CONSENT_REVOKED, AUTH_FAILED
    severity: str  # INFO, WARNING, ERROR
    record_id: str = ""
    reason: str = ""
    source: str = ""  # Module/function that emitted the event
    request_id: str = ""
    user_id: str = ""
    user_role: str = ""
    source_ip: str = ""
    additional_context: Dict[str, Any] = dataclass_field(default_factory=dict)
    timestamp: str = dataclass_field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return {
            'timestamp': self.timestamp,
            'event_type': self.event_type,
            'severity': self.severity,
            'record_id': self.record_id,
            'reason': self.reason,
            'source': self.source,
            'request_id': self.request_id,
            'user_id': self.user_id,
            'user_role': self.user_role,
            'source_ip': self.source_ip,
            'context': self.additional_context
        }

    def to_json(self) -> str:
        """Convert to JSON string"""
        return json.dumps(self.to_dict(), ensure_ascii=False)


class SecurityLogger:
    """Handles security event logging with structured output

    Features:
    - Separate security.log file
    - One JSON event per line
    - Automatic sanitization of user-supplied values
    - Request ID correlation
    """

    def __init__(
        self,
        log_dir: str = "logs",
        log_level: int = logging.INFO,
        enable_console: bool = False,
        enable_file: bool = True
    ):
        """Initialize security logger

        Args:
            log_dir: Directory for log files
            log_level: Minimum log level to record
            enable_console: Also output to console
            enable_file: Write to security.log file
        """
        self.log_dir = Path(log_dir)
        if enable_file:
            self.log_dir.mkdir(parents=True, exist_ok=True)

        self.logger = logging.getLogger('security')
        self.logger.setLevel(log_level)
        self.logger.propagate = False
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

        formatter = logging.Formatter(
            '%(asctime)s - SECURITY - %(levelname)s - %(message)s'
        )

        if enable_file:
            security_log_path = self.log_dir / "security.log"
            file_handler = logging.FileHandler(security_log_path, encoding='utf-8')
            file_handler.setLevel(log_level)
            file_handler.setFormatter(formatter)
            self.logger.addHandler(file_handler)

        if enable_console:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(log_level)
            console_handler.setFormatter(formatter)
            self.logger.addHandler(console_handler)

        self._request_id: str = ""
        self._user_id: str = ""
        self._source_ip: str = ""

    def set_request_context(
        self,
        request_id: Optional[str] = None,
        user_id: str = "",
        source_ip: str = ""
    ) -> str:
        """Set context for the current request

        Args:
            request_id: Unique request identifier (auto-generated if None)
            user_id: User identifier if available
            source_ip: Source IP address if available

        Returns:
            The request ID being used
        """
        self._request_id = request_id or f"REQ-{uuid.uuid4().hex[:8]}"
        self._user_id = user_id
        self._source_ip = source_ip
        return self._request_id

    def clear_request_context(self) -> None:
        """Clear the current request context"""
        self._request_id = ""
        self._user_id = ""
        self._source_ip = ""

    def _sanitize_input(self, text: str, max_length: int = 50) -> str:
        """Sanitize input for safe logging

        Args:
            text: Input text to sanitize
            max_length: Maximum length to include

        Returns:
            Sanitized text safe for logging
        """
        if not text:
            return ""
        sanitized = sanitize_for_logging(text)
        if len(sanitized) > max_length:
            return sanitized[:max_length] + "...(truncated)"
        return sanitized

    def _sanitize_context(self, context: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Sanitize all values in a context dictionary for safe logging

        Non-string scalars are kept, nested dicts are sanitized recursively
        and anything else is converted to a sanitized string.
        """
        if not context:
            return {}

        sanitized = {}
        for key, value in context.items():
            safe_key = self._sanitize_input(str(key), max_length=100) if key else "unknown"

            if value is None or isinstance(value, (bool, int, float)):
                sanitized[safe_key] = value
            elif isinstance(value, str):
                sanitized[safe_key] = self._sanitize_input(value, max_length=200)
            elif isinstance(value, dict):
                sanitized[safe_key] = self._sanitize_context(value)
            elif isinstance(value, (list, tuple)):
                sanitized[safe_key] = [
                    item if isinstance(item, (bool, int, float, type(None)))
                    else self._sanitize_input(str(item), max_length=200)
                    for item in value
                ]
            else:
                sanitized[safe_key] = self._sanitize_input(str(value), max_length=200)

        return sanitized

    def log_security_event(
        self,
        event_type: str,
        severity: str = "WARNING",
        record_id: str = "",
        reason: str = "",
        user_id: str = "",
        user_role: str = "",
        source: str = "",
        additional_context: Optional[Dict[str, Any]] = None
    ) -> None:
        """Log a security event

        Args:
            event_type: Type of security event (ACCESS_DENIED, AUTH_FAILED, etc.)
            severity: INFO, WARNING, ERROR, or CRITICAL
            record_id: Knowledge record involved, if any
            reason: Machine-readable reason
            user_id: Acting user; falls back to the request context
            user_role: Acting user's role
            source: Source module/function
            additional_context: Additional context (will be sanitized)
        """
        event = SecurityEvent(
            event_type=event_type,
            severity=severity,
            record_id=str(record_id) if record_id else "",
            reason=self._sanitize_input(reason, max_length=200),
            source=source,
            request_id=self._request_id,
            user_id=str(user_id) if user_id else self._user_id,
            user_role=user_role,
            source_ip=self._source_ip,
            additional_context=self._sanitize_context(additional_context)
        )

        level = getattr(logging, severity.upper(), logging.WARNING)
        self.logger.log(level, event.to_json())

    def log_access_denied(
        self,
        record_id: str,
        user_id: str,
        user_role: str,
        reason: str,
        required_level: str = "",
        source: str = ""
    ) -> None:
        """Log a refused read of a knowledge record"""
        self.log_security_event(
            event_type="ACCESS_DENIED",
            severity="WARNING",
            record_id=record_id,
            reason=reason,
            user_id=user_id,
            user_role=user_role,
            source=source,
            additional_context={"required_level": required_level}
        )

    def log_access_granted(
        self,
        record_id: str,
        user_id: str,
        user_role: str,
        access_level: str,
        purpose: str = "",
        source: str = ""
    ) -> None:
        """Log a read of a record above the public level"""
        self.log_security_event(
            event_type="ACCESS_GRANTED",
            severity="INFO",
            record_id=record_id,
            user_id=user_id,
            user_role=user_role,
            source=source,
            additional_context={"access_level": access_level, "purpose": purpose}
        )

    def log_consent_revoked(
        self,
        record_id: str,
        user_id: str,
        user_role: str,
        reason: str,
        source: str = ""
    ) -> None:
        """Log a consent revocation"""
        self.log_security_event(
            event_type="CONSENT_REVOKED",
            severity="WARNING",
            record_id=record_id,
            reason=reason,
            user_id=user_id,
            user_role=user_role,
            source=source
        )

    def log_auth_failure(
        self,
        reason: str,
        identifier: str = "",
        source: str = ""
    ) -> None:
        """Log a failed authentication (bad token or bad credentials)

        Args:
            reason: no_token, invalid_token, expired_token, invalid_credentials...
            identifier: Login identifier supplied, if any (will be sanitized)
            source: Source module/function
        """
        self.log_security_event(
            event_type="AUTH_FAILED",
            severity="WARNING",
            reason=reason,
            source=source,
            additional_context={"identifier": identifier} if identifier else None
        )

    def log_rate_limited(
        self,
        identity: str,
        limit: int,
        retry_after: int,
        source: str = ""
    ) -> None:
        """Log a request rejected by the rate limiter"""
        self.log_security_event(
            event_type="RATE_LIMITED",
            severity="WARNING",
            reason="rate_limit_exceeded",
            source=source,
            additional_context={"identity": identity, "limit": limit, "retry_after": retry_after}
        )


# Global security logger instance
_security_logger: Optional[SecurityLogger] = None


def get_security_logger(
    log_dir: Optional[str] = None,
    enable_console: bool = False
) -> SecurityLogger:
    """Get or create the global security logger instance

    Args:
        log_dir: Directory for log files (defaults to logging.security_log_dir)
        enable_console: Also output to console

    Returns:
        SecurityLogger instance
    """
    global _security_logger
    if _security_logger is None:
        if log_dir is None:
            from config_manager import get_config
            log_dir = get_config().logging.security_log_dir
        _security_logger = SecurityLogger(
            log_dir=log_dir,
            enable_console=enable_console
        )
    return _security_logger


def reset_security_logger() -> None:
    """Reset the global security logger (for testing)"""
    global _security_logger
    if _security_logger is not None:
        for handler in list(_security_logger.logger.handlers):
            _security_logger.logger.removeHandler(handler)
            handler.close()
    _security_logger = None
