#!/usr/bin/env python3
"""
Configuration management for the feed reader.

This module centralizes all configuration loading, validation, and management.
It handles environment variables, the feed source list and logging setup, and
provides a clean interface for accessing configuration values throughout the
application.
"""

from dataclasses import dataclass
from os import environ, path, access, R_OK
from typing import Dict, Any, List, Optional
from logging import getLogger, basicConfig, StreamHandler, INFO, DEBUG, WARNING, ERROR
import sys
import yaml
from dotenv import load_dotenv


def _setup_global_logger():
    """Setup a single global logger for the entire application.

    Environment Variables:
        LOG_LEVEL: Set log level (DEBUG, INFO, WARNING, ERROR) - defaults to INFO
        LOG_TIMESTAMPS: Enable/disable timestamps in logs (true/false) - defaults to true

    The logger outputs to stdout with line buffering for real-time logging.
    All modules should use get_logger() to create module-specific loggers that inherit this configuration.
    """
    level_str = environ.get("LOG_LEVEL", "INFO").upper()
    level_map = {
        "DEBUG": DEBUG,
        "INFO": INFO,
        "WARNING": WARNING,
        "ERROR": ERROR
    }
    level = level_map.get(level_str, INFO)

    show_timestamps = environ.get("LOG_TIMESTAMPS", "true").lower() != "false"

    if show_timestamps:
        log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    else:
        log_format = '%(name)s - %(levelname)s - %(message)s'

    basicConfig(
        level=level,
        format=log_format,
        handlers=[StreamHandler(sys.stdout)],
        force=True  # Force reconfiguration if already configured
    )

    # Azure exporters are chatty at INFO
    azure_level = level_map.get(environ.get("AZURE_LOG_LEVEL", "WARNING").upper(), WARNING)
    for name in ("azure", "azure.core", "azure.monitor"):
        getLogger(name).setLevel(azure_level)

    return getLogger("FeedReader")


def get_logger(name: str):
    """Get a module-specific logger with the unified configuration.

    Args:
        name: The logger name (e.g., "fetcher", "scraper", "channels")

    Returns:
        A logger named "FeedReader.{name}"
    """
    return getLogger(f"FeedReader.{name}")


logger = _setup_global_logger()


@dataclass
class FeedSource:
    """A configured feed source with optionally pre-populated channel metadata."""

    slug: str
    rss_url: str
    category: Optional[str] = None
    title: Optional[str] = None
    icon: Optional[str] = None
    dominant_color: Optional[str] = None

    @property
    def needs_fresh(self) -> bool:
        """True when any resolvable channel field is absent."""
        return not (self.title and self.icon and self.dominant_color)


class Config:
    """Configuration manager for the feed reader.

    Configuration is loaded from multiple sources:
    1. Environment variables
    2. .env file (if present)
    3. YAML secrets file (if SECRETS_FILE environment variable is set)
    4. feeds.yaml configuration file

    .env values override the process environment, and secrets file values
    override both.

    Example secrets.yaml format:
    ```yaml
    AZURE_ENDPOINT: "your-resource.openai.azure.com"
    OPENAI_API_KEY: "your-api-key"
    ```
    """

    def __init__(self):
        """Initialize configuration with environment variables and validation."""
        self._load_environment()
        self._validate_and_set_config()
        self._load_feed_sources()

    def _load_environment(self):
        """Load environment variables from .env file and secrets file if present."""
        dotenv_path = path.join(path.dirname(path.abspath(__file__)), '.env')
        if path.exists(dotenv_path):
            load_dotenv(dotenv_path)
            logger.info(f"Loaded environment variables from {dotenv_path}")

        self._load_secrets_file()

    def _validate_positive_int(self, env_var: str, default: int, min_val: int = 1) -> int:
        """Validate and parse a positive integer environment variable."""
        try:
            value = int(environ.get(env_var, str(default)))
            if value < min_val:
                logger.warning(f"{env_var} must be at least {min_val}, using default {default}")
                return default
            return value
        except (ValueError, TypeError):
            logger.warning(f"Invalid {env_var} value, using default {default}")
            return default

    def _validate_positive_float(self, env_var: str, default: float, min_val: float = 0.1) -> float:
        """Validate and parse a positive float environment variable."""
        try:
            value = float(environ.get(env_var, str(default)))
            if value < min_val:
                logger.warning(f"{env_var} must be at least {min_val}, using default {default}")
                return default
            return value
        except (ValueError, TypeError):
            logger.warning(f"Invalid {env_var} value, using default {default}")
            return default

    def _validate_and_set_config(self):
        """Validate and set all configuration values."""
        self.DATABASE_PATH = environ.get("DATABASE_PATH", "articles.db")
        self.USER_AGENT = environ.get("USER_AGENT", "Mozilla/5.0 (compatible; FeedReader/1.0)")

        # Timing configuration
        self.FETCH_INTERVAL_MINUTES = self._validate_positive_int("FETCH_INTERVAL_MINUTES", 30, 1)

        # HTTP request configuration
        self.HTTP_TIMEOUT = self._validate_positive_int("HTTP_TIMEOUT", 30, 5)
        self.MAX_REDIRECTS = self._validate_positive_int("MAX_REDIRECTS", 5, 0)

        # Pipeline concurrency
        self.ENTRY_CONCURRENCY = self._validate_positive_int("ENTRY_CONCURRENCY", 4, 1)
        self.SOURCE_CONCURRENCY = self._validate_positive_int("SOURCE_CONCURRENCY", 2, 1)

        # Video platform companion API (Piped)
        self.PIPED_INSTANCE = environ.get("PIPED_INSTANCE", "https://pipedapi.kavin.rocks").rstrip("/")

        # File size limits
        self.SCHEMA_FILE_SIZE_LIMIT_MB = self._validate_positive_int("SCHEMA_FILE_SIZE_LIMIT_MB", 10, 1)

        # OpenAI/Azure AI configuration for the summarizer
        self.AZURE_ENDPOINT = environ.get("AZURE_ENDPOINT")
        # Normalize endpoint (strip scheme and trailing slashes) to avoid malformed URLs
        if self.AZURE_ENDPOINT:
            normalized = self.AZURE_ENDPOINT.strip()
            if normalized.lower().startswith("https://"):
                normalized = normalized[8:]
            elif normalized.lower().startswith("http://"):
                normalized = normalized[7:]
            normalized = normalized.strip("/")
            if normalized != self.AZURE_ENDPOINT:
                logger.info(f"Normalized AZURE_ENDPOINT to '{normalized}'")
            self.AZURE_ENDPOINT = normalized
        self.OPENAI_API_KEY = environ.get("OPENAI_API_KEY")
        self.OPENAI_API_VERSION = environ.get("OPENAI_API_VERSION")
        self.DEPLOYMENT_NAME = environ.get("DEPLOYMENT_NAME")
        # Larger-context deployment for long articles; same deployment when unset
        self.LARGE_DEPLOYMENT_NAME = environ.get("LARGE_DEPLOYMENT_NAME") or self.DEPLOYMENT_NAME

        # Summarizer behaviour
        self.SUMMARIZER_MAX_RETRIES = self._validate_positive_int("SUMMARIZER_MAX_RETRIES", 0, 0)
        self.SUMMARIZER_RETRY_DELAY_BASE = self._validate_positive_float("SUMMARIZER_RETRY_DELAY_BASE", 1.0, 0.1)
        self.SUMMARIZER_REQUESTS_PER_MINUTE = self._validate_positive_int("SUMMARIZER_REQUESTS_PER_MINUTE", 60, 1)
        self.SUMMARY_MAX_TOKENS = self._validate_positive_int("SUMMARY_MAX_TOKENS", 512, 16)
        # Character budgets assume ~3 characters per token (4k and 16k context tiers)
        self.SUMMARY_SMALL_CHAR_BUDGET = self._validate_positive_int("SUMMARY_SMALL_CHAR_BUDGET", 4096 * 3, 100)
        self.SUMMARY_LARGE_CHAR_BUDGET = self._validate_positive_int("SUMMARY_LARGE_CHAR_BUDGET", 16384 * 3, 100)
        self.SUMMARY_MAX_CONTENT_CHARS = self._validate_positive_int("SUMMARY_MAX_CONTENT_CHARS", 200000, 100)

        # HTTP surface
        self.SERVER_HOST = environ.get("SERVER_HOST", "127.0.0.1")
        self.SERVER_PORT = self._validate_positive_int("SERVER_PORT", 8080, 1)

        # File paths
        base_dir = path.dirname(path.abspath(__file__))
        self.SCHEMA_FILE_PATH = path.join(base_dir, "schema.sql")
        self.FEEDS_CONFIG_PATH = environ.get("FEEDS_CONFIG_PATH", path.join(base_dir, "feeds.yaml"))
        self.PROMPT_CONFIG_PATH = path.join(base_dir, "prompt.yaml")

    def _load_secrets_file(self):
        """Load environment variable overrides from a YAML secrets file.

        Expected YAML formats (both supported):
        ```yaml
        # Preferred: top-level mapping
        OPENAI_API_KEY: "your-api-key"

        # Backward-compatible: nested under `environment`
        # environment:
        #   OPENAI_API_KEY: "your-api-key"
        ```
        """
        secrets_file_path = environ.get("SECRETS_FILE")
        if not secrets_file_path:
            logger.debug("SECRETS_FILE not set; relying on environment/.env for secrets")
            return

        secrets_config = self._safe_read_yaml(secrets_file_path, 2 * 1024 * 1024, 'secrets')
        if not isinstance(secrets_config, dict):
            if secrets_config is not None:
                logger.warning(f"Secrets file {secrets_file_path} must be a YAML mapping at the top level")
            return

        env_vars = secrets_config.get('environment') if isinstance(secrets_config.get('environment'), dict) else secrets_config

        secrets_loaded = 0
        for key, value in env_vars.items():
            if isinstance(key, str) and value is not None:
                environ[key] = str(value)
                secrets_loaded += 1
            else:
                logger.warning(f"Skipping invalid environment variable in secrets file: {key}")
        logger.info(f"Loaded {secrets_loaded} environment variables from secrets file {secrets_file_path}")

    def _safe_read_yaml(self, file_path: str, max_size: int, kind: str) -> Any | None:
        """Safely read a YAML file with consistent validation.

        Args:
            file_path: Path to the YAML file
            max_size: Maximum allowed file size in bytes
            kind: Short label for logging context (e.g. 'secrets', 'feeds')

        Returns:
            Parsed YAML (mapping/list/primitive) or None on failure.
        """
        try:
            if not path.isfile(file_path):
                logger.warning(f"{kind.capitalize()} file not found at {file_path}")
                return None
            if not access(file_path, R_OK):
                logger.error(f"No read permission for {kind} file at {file_path}")
                return None
            size = path.getsize(file_path)
            if size > max_size:
                logger.error(f"{kind.capitalize()} file too large: {size} bytes (limit: {max_size} bytes)")
                return None
            with open(file_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
            if not data:
                logger.warning(f"Empty or invalid YAML in {kind} file {file_path}")
                return None
            return data
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML in {kind} file {file_path}: {e}")
        except OSError as e:
            logger.error(f"Error loading {kind} file {file_path}: {e}")
        return None

    def _load_feed_sources(self) -> None:
        """Populate self.FEED_SOURCES from feeds.yaml.

        Any failure results in an empty mapping; invalid entries are skipped.
        """
        feeds_path = self.FEEDS_CONFIG_PATH
        config_data = self._safe_read_yaml(feeds_path, 5 * 1024 * 1024, 'feeds')
        feeds_section = config_data.get('feeds') if isinstance(config_data, dict) else None
        if not isinstance(feeds_section, dict):
            if config_data is not None:
                logger.warning(f"No valid feeds found in {feeds_path}")
            self.FEED_SOURCES: Dict[str, FeedSource] = {}
            return

        self.FEED_SOURCES = parse_feed_sources(feeds_section)
        logger.info(f"Loaded {len(self.FEED_SOURCES)} feeds from {feeds_path}")

    def reload_feed_sources(self):
        """Reload feed sources from configuration file."""
        logger.info("Reloading feed sources configuration")
        self._load_feed_sources()

    def get_config_summary(self) -> Dict[str, Any]:
        """Get a summary of current configuration for logging/debugging."""
        return {
            "database_path": self.DATABASE_PATH,
            "fetch_interval_minutes": self.FETCH_INTERVAL_MINUTES,
            "http_timeout": self.HTTP_TIMEOUT,
            "entry_concurrency": self.ENTRY_CONCURRENCY,
            "source_concurrency": self.SOURCE_CONCURRENCY,
            "feed_count": len(self.FEED_SOURCES),
            "piped_instance": self.PIPED_INSTANCE,
            "secrets_file_configured": bool(environ.get("SECRETS_FILE")),
            "has_azure_endpoint": bool(self.AZURE_ENDPOINT),
            "has_openai_key": bool(self.OPENAI_API_KEY),
        }


def parse_feed_sources(feeds_section: Dict[str, Any]) -> Dict[str, FeedSource]:
    """Build FeedSource records from the `feeds` mapping of feeds.yaml.

    Accepts either `slug: {url: ..., title: ...}` or the short `slug: url` form.
    """
    sources: Dict[str, FeedSource] = {}
    for slug, feed_cfg in feeds_section.items():
        if isinstance(feed_cfg, str):
            feed_cfg = {'url': feed_cfg}
        if not isinstance(feed_cfg, dict) or not feed_cfg.get('url'):
            logger.warning(f"Skipping invalid feed configuration for '{slug}': {feed_cfg}")
            continue

        def _optional(key: str) -> Optional[str]:
            value = feed_cfg.get(key)
            if value is None:
                return None
            value = str(value).strip()
            return value or None

        sources[str(slug)] = FeedSource(
            slug=str(slug),
            rss_url=str(feed_cfg['url']).strip(),
            category=_optional('category'),
            title=_optional('title'),
            icon=_optional('icon'),
            dominant_color=_optional('dominant_color'),
        )
        logger.debug(f"Loaded feed {slug}: {feed_cfg['url']}")
    return sources


def select_sources(only_slugs: Optional[List[str]] = None) -> List[FeedSource]:
    """Return configured sources, optionally restricted to the given slugs."""
    return [
        source for slug, source in config.FEED_SOURCES.items()
        if only_slugs is None or slug in only_slugs
    ]


# Global configuration instance
config = Config()
