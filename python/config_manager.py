"""
Configuration Management Module
Loads and validates configuration from config.yaml
"""

import os
import yaml
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional, List

logger = logging.getLogger(__name__)

# Secret used when neither config.yaml nor JWT_SECRET provides one.
# Fine for local development, rejected by validate() when strict.
DEV_JWT_SECRET = "halamanggaling-dev-secret"

SUPPORTED_JWT_ALGORITHMS = ("HS256", "HS384", "HS512")


@dataclass
class AuthConfig:
    """Token issuance settings"""
    jwt_secret: str = DEV_JWT_SECRET
    jwt_algorithm: str = "HS256"
    token_expiry_days: int = 7
    require_strong_secret: bool = False


@dataclass
class AccessConfig:
    """Knowledge-record access settings"""
    page_size: int = 20
    public_list_limit: int = 50
    default_access_level: str = "restricted"
    default_view_purpose: str = "View"
    ipr_review_interval_days: int = 365
    self_registration_roles: List[str] = field(default_factory=lambda: ['user', 'professional'])


@dataclass
class RateLimitConfig:
    """Request-frequency limits, backed by redis"""
    enabled: bool = False
    redis_url: str = ""
    requests: int = 100
    window_seconds: int = 900
    key_prefix: str = "halamanggaling:ratelimit"


@dataclass
class ValidationConfig:
    """Input validation limits for user-provided data"""
    username_min_length: int = 3
    username_max_length: int = 50
    password_min_length: int = 6
    reason_max_length: int = 1000


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    file: str = "logs/halamanggaling.log"
    console: bool = True
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    security_log_dir: str = "logs"


class ConfigurationError(Exception):
    """Raised when configuration is invalid"""
    pass


class ConfigManager:
    """Manages system configuration"""

    _instance: Optional['ConfigManager'] = None

    def __init__(self, config_path: Optional[str] = None, apply_env: bool = True):
        """Initialize configuration manager

        Args:
            config_path: Path to config.yaml file
            apply_env: Apply environment variable overrides after loading
        """
        self.config_path = Path(config_path) if config_path else self._find_config()
        self._raw_config: Dict[str, Any] = {}
        self.auth: AuthConfig = AuthConfig()
        self.access: AccessConfig = AccessConfig()
        self.rate_limit: RateLimitConfig = RateLimitConfig()
        self.validation: ValidationConfig = ValidationConfig()
        self.logging: LoggingConfig = LoggingConfig()

        if self.config_path and self.config_path.exists():
            self.load()
        else:
            logger.warning(f"Config file not found at {self.config_path}, using defaults")

        if apply_env:
            self._apply_env_overrides()
        self.validate()

    def _find_config(self) -> Path:
        """Find config.yaml in common locations"""
        env_path = os.getenv("CONFIG_PATH")
        if env_path:
            return Path(env_path)

        search_paths = [
            Path(__file__).parent / "config.yaml",
            Path.cwd() / "config.yaml",
            Path.cwd() / "python" / "config.yaml",
        ]

        for path in search_paths:
            if path.exists():
                return path

        return search_paths[0]

    def load(self) -> None:
        """Load configuration from YAML file"""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")
        except FileNotFoundError:
            raise ConfigurationError(f"Config file not found: {self.config_path}")

        if not isinstance(self._raw_config, dict):
            raise ConfigurationError("Config file must contain a mapping at the top level")

        self._parse_auth()
        self._parse_access()
        self._parse_rate_limit()
        self._parse_validation()
        self._parse_logging()

    def _section(self, name: str) -> Dict[str, Any]:
        cfg = self._raw_config.get(name) or {}
        if not isinstance(cfg, dict):
            raise ConfigurationError(f"Config section '{name}' must be a mapping")
        return cfg

    def _parse_auth(self) -> None:
        """Parse token settings"""
        cfg = self._section('auth')
        self.auth = AuthConfig(
            jwt_secret=cfg.get('jwt_secret', self.auth.jwt_secret),
            jwt_algorithm=cfg.get('jwt_algorithm', 'HS256'),
            token_expiry_days=cfg.get('token_expiry_days', 7),
            require_strong_secret=cfg.get('require_strong_secret', False)
        )

    def _parse_access(self) -> None:
        """Parse knowledge access settings"""
        cfg = self._section('access')
        self.access = AccessConfig(
            page_size=cfg.get('page_size', 20),
            public_list_limit=cfg.get('public_list_limit', 50),
            default_access_level=cfg.get('default_access_level', 'restricted'),
            default_view_purpose=cfg.get('default_view_purpose', 'View'),
            ipr_review_interval_days=cfg.get('ipr_review_interval_days', 365),
            self_registration_roles=cfg.get('self_registration_roles',
                                            self.access.self_registration_roles)
        )

    def _parse_rate_limit(self) -> None:
        """Parse rate limiting settings"""
        cfg = self._section('rate_limit')
        self.rate_limit = RateLimitConfig(
            enabled=cfg.get('enabled', False),
            redis_url=cfg.get('redis_url', ''),
            requests=cfg.get('requests', 100),
            window_seconds=cfg.get('window_seconds', 900),
            key_prefix=cfg.get('key_prefix', self.rate_limit.key_prefix)
        )

    def _parse_validation(self) -> None:
        """Parse input validation limits"""
        cfg = self._section('validation')
        self.validation = ValidationConfig(
            username_min_length=cfg.get('username_min_length', 3),
            username_max_length=cfg.get('username_max_length', 50),
            password_min_length=cfg.get('password_min_length', 6),
            reason_max_length=cfg.get('reason_max_length', 1000)
        )

    def _parse_logging(self) -> None:
        """Parse logging configuration"""
        cfg = self._section('logging')
        self.logging = LoggingConfig(
            level=cfg.get('level', 'INFO'),
            file=cfg.get('file', 'logs/halamanggaling.log'),
            console=cfg.get('console', True),
            format=cfg.get('format', self.logging.format),
            security_log_dir=cfg.get('security_log_dir', 'logs')
        )

    def _apply_env_overrides(self) -> None:
        """Environment variables win over config.yaml"""
        if os.getenv("JWT_SECRET"):
            self.auth.jwt_secret = os.environ["JWT_SECRET"]
        if os.getenv("REDIS_URL"):
            self.rate_limit.redis_url = os.environ["REDIS_URL"]
            self.rate_limit.enabled = True
        if os.getenv("RATE_LIMIT_ENABLED"):
            self.rate_limit.enabled = os.environ["RATE_LIMIT_ENABLED"].lower() == "true"
        if os.getenv("LOG_LEVEL"):
            self.logging.level = os.environ["LOG_LEVEL"]

    def validate(self) -> None:
        """Validate configuration values

        Raises:
            ConfigurationError: listing every invalid value
        """
        errors = []

        if not self.auth.jwt_secret:
            errors.append("auth.jwt_secret must not be empty")
        elif self.auth.require_strong_secret and (
            self.auth.jwt_secret == DEV_JWT_SECRET or len(self.auth.jwt_secret) < 32
        ):
            errors.append("auth.jwt_secret must be a non-default secret of at least 32 characters")
        if self.auth.jwt_algorithm not in SUPPORTED_JWT_ALGORITHMS:
            errors.append(f"auth.jwt_algorithm must be one of {', '.join(SUPPORTED_JWT_ALGORITHMS)}")
        if self.auth.token_expiry_days <= 0:
            errors.append("auth.token_expiry_days must be positive")

        if self.access.page_size <= 0:
            errors.append("access.page_size must be positive")
        if self.access.public_list_limit <= 0:
            errors.append("access.public_list_limit must be positive")
        if self.access.default_access_level not in (
            'public', 'registered_users', 'researchers_only',
            'community_only', 'restricted', 'private'
        ):
            errors.append(f"access.default_access_level is not a known level: {self.access.default_access_level}")
        if 'admin' in self.access.self_registration_roles:
            errors.append("access.self_registration_roles must not include admin")

        if self.rate_limit.enabled and not self.rate_limit.redis_url:
            errors.append("rate_limit.redis_url is required when rate limiting is enabled")
        if self.rate_limit.requests <= 0:
            errors.append("rate_limit.requests must be positive")
        if self.rate_limit.window_seconds <= 0:
            errors.append("rate_limit.window_seconds must be positive")

        if self.validation.username_min_length > self.validation.username_max_length:
            errors.append("validation.username_min_length exceeds username_max_length")

        if self.logging.level.upper() not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            errors.append(f"logging.level is not a valid level: {self.logging.level}")

        if errors:
            raise ConfigurationError("Invalid configuration: " + "; ".join(errors))

    @classmethod
    def create(cls, config_path: Optional[str] = None, apply_env: bool = False) -> 'ConfigManager':
        """Create a fresh, non-singleton configuration (useful for DI and tests)"""
        return cls(config_path, apply_env=apply_env)

    @classmethod
    def get_instance(cls, config_path: Optional[str] = None) -> 'ConfigManager':
        """Get singleton instance of ConfigManager"""
        if cls._instance is None:
            cls._instance = ConfigManager(config_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset singleton instance (useful for testing)"""
        cls._instance = None

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary (secrets omitted)"""
        return {
            'auth': {
                'jwt_algorithm': self.auth.jwt_algorithm,
                'token_expiry_days': self.auth.token_expiry_days
            },
            'access': {
                'page_size': self.access.page_size,
                'public_list_limit': self.access.public_list_limit,
                'default_access_level': self.access.default_access_level,
                'default_view_purpose': self.access.default_view_purpose,
                'ipr_review_interval_days': self.access.ipr_review_interval_days,
                'self_registration_roles': list(self.access.self_registration_roles)
            },
            'rate_limit': {
                'enabled': self.rate_limit.enabled,
                'requests': self.rate_limit.requests,
                'window_seconds': self.rate_limit.window_seconds
            },
            'logging': {
                'level': self.logging.level,
                'file': self.logging.file,
                'console': self.logging.console
            }
        }


def get_config(config_path: Optional[str] = None) -> ConfigManager:
    """Convenience function to get configuration instance"""
    return ConfigManager.get_instance(config_path)
