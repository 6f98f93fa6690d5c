"""
Configuration for the Ennoblement Watcher pipeline.

Settings are read from environment variables and validated once at
startup; every problem found is reported together in a ConfigError.
The runtime filter switch lives here too: it is owned by the operator
and consulted by the poll cycle at the start of every cycle.
"""

import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from ennoblement_watcher.fetch import DEFAULT_TARGET_URL, validate_url
from ennoblement_watcher.models import CURSOR_HASH, CURSOR_TIMESTAMP, FilterConfig
from ennoblement_watcher.notify import TEMPLATE_PLACEHOLDER
from ennoblement_watcher.parse import DEFAULT_ROW_SELECTOR
from ennoblement_watcher.schedule import DEFAULT_CRON_EXPRESSION, is_valid_cron_expression
from ennoblement_watcher.state import DEFAULT_STATE_PATH
from ennoblement_watcher.utils import get_logger, parse_bool


# Module logger
logger = get_logger("config")

DEFAULT_MESSAGE_TEMPLATE = f"Ennoblement updates:\n{TEMPLATE_PLACEHOLDER}"
DEFAULT_FACTION = "SiSu"
DEFAULT_X_MAX = 452
DEFAULT_Y_MIN = 462
DEFAULT_SMTP_PORT = 587

NOTIFIER_CHOICES = ("log", "webhook", "email")
CURSOR_STRATEGIES = (CURSOR_TIMESTAMP, CURSOR_HASH)


class ConfigError(ValueError):
    """Raised when the configuration is invalid."""

    def __init__(self, problems: List[str]):
        super().__init__("Configuration validation failed:\n" + "\n".join(f"- {p}" for p in problems))
        self.problems = problems


@dataclass
class Settings:
    """Validated application settings."""
    target_url: str = DEFAULT_TARGET_URL
    row_selector: str = DEFAULT_ROW_SELECTOR
    cron_expression: str = DEFAULT_CRON_EXPRESSION
    recipients: List[str] = field(default_factory=list)
    message_template: str = DEFAULT_MESSAGE_TEMPLATE
    faction_name: str = DEFAULT_FACTION
    x_max_exclusive: float = DEFAULT_X_MAX
    y_min_exclusive: float = DEFAULT_Y_MIN
    filters_enabled: bool = True
    cursor_strategy: str = CURSOR_TIMESTAMP
    state_file: str = DEFAULT_STATE_PATH
    notifier: str = "log"
    smtp_host: Optional[str] = None
    smtp_port: int = DEFAULT_SMTP_PORT
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    email_from: Optional[str] = None
    run_once: bool = False
    dry_run: bool = False
    log_level: str = "INFO"

    def filter_config(self) -> FilterConfig:
        return FilterConfig(
            faction_name=self.faction_name,
            x_max_exclusive=self.x_max_exclusive,
            y_min_exclusive=self.y_min_exclusive,
        )


class FilterSwitch:
    """
    Operator-owned filter state.

    Example:
        switch = FilterSwitch(settings.filter_config())
        switch.disable()
        await cycle.run_once(switch.current())  # every event matches
    """

    def __init__(self, filters: FilterConfig, enabled: bool = True):
        self.filters = filters
        self._enabled = enabled

    @property
    def is_enabled(self) -> bool:
        return self._enabled

    def enable(self) -> None:
        self._enabled = True
        logger.info("Event filters enabled")

    def disable(self) -> None:
        self._enabled = False
        logger.info("Event filters disabled")

    def toggle(self) -> bool:
        if self._enabled:
            self.disable()
        else:
            self.enable()
        return self._enabled

    def current(self) -> Optional[FilterConfig]:
        return self.filters if self._enabled else None


def _get(env: Mapping[str, str], name: str, default: Optional[str] = None) -> Optional[str]:
    value = env.get(name)
    if value is None or value.strip() == "":
        return default
    return value.strip()


def _get_number(env: Mapping[str, str], name: str, default: float, problems: List[str]) -> float:
    raw = _get(env, name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        problems.append(f"{name} must be a number, got '{raw}'")
        return default
    return int(value) if value.is_integer() else value


def split_list(value: Optional[str]) -> List[str]:
    """Split a comma-separated value, dropping blanks."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Load and validate settings from environment variables.

    Args:
        env: Mapping to read instead of os.environ.

    Returns:
        Validated Settings.

    Raises:
        ConfigError: Listing every invalid setting.
    """
    if env is None:
        env = os.environ

    problems: List[str] = []

    target_url = _get(env, "TARGET_URL", DEFAULT_TARGET_URL)
    if not validate_url(target_url):
        problems.append(f"TARGET_URL must be a valid HTTP/HTTPS URL, got '{target_url}'")

    cron_expression = _get(env, "CRON_EXPRESSION", DEFAULT_CRON_EXPRESSION)
    if not is_valid_cron_expression(cron_expression):
        problems.append(f"CRON_EXPRESSION must be a valid cron expression, got '{cron_expression}'")

    # Literal "\n" sequences are allowed so templates fit on one env line
    message_template = (env.get("MESSAGE_TEMPLATE") or DEFAULT_MESSAGE_TEMPLATE).replace("\\n", "\n")
    if TEMPLATE_PLACEHOLDER not in message_template:
        problems.append(f"MESSAGE_TEMPLATE must contain {TEMPLATE_PLACEHOLDER} placeholder")

    filters_enabled = parse_bool(_get(env, "FILTERS_ENABLED"), default=True)
    faction_name = _get(env, "FILTER_FACTION", DEFAULT_FACTION)
    x_max = _get_number(env, "FILTER_X_MAX", DEFAULT_X_MAX, problems)
    y_min = _get_number(env, "FILTER_Y_MIN", DEFAULT_Y_MIN, problems)

    cursor_strategy = _get(env, "CURSOR_STRATEGY", CURSOR_TIMESTAMP).lower()
    if cursor_strategy not in CURSOR_STRATEGIES:
        problems.append(f"CURSOR_STRATEGY must be one of {', '.join(CURSOR_STRATEGIES)}")

    notifier = _get(env, "NOTIFIER", "log").lower()
    if notifier not in NOTIFIER_CHOICES:
        problems.append(f"NOTIFIER must be one of {', '.join(NOTIFIER_CHOICES)}")

    recipients = split_list(env.get("RECIPIENTS"))
    if notifier == "webhook":
        for url in recipients:
            if not validate_url(url):
                problems.append(f"Webhook recipient is not a valid URL: '{url}'")

    smtp_port_raw = _get(env, "SMTP_PORT", str(DEFAULT_SMTP_PORT))
    smtp_port = DEFAULT_SMTP_PORT
    if smtp_port_raw.isdigit() and 1 <= int(smtp_port_raw) <= 65535:
        smtp_port = int(smtp_port_raw)
    else:
        problems.append(f"SMTP_PORT must be an integer between 1 and 65535, got '{smtp_port_raw}'")

    settings = Settings(
        target_url=target_url,
        row_selector=_get(env, "CSS_SELECTOR", DEFAULT_ROW_SELECTOR),
        cron_expression=cron_expression,
        recipients=recipients,
        message_template=message_template,
        faction_name=faction_name,
        x_max_exclusive=x_max,
        y_min_exclusive=y_min,
        filters_enabled=filters_enabled,
        cursor_strategy=cursor_strategy,
        state_file=_get(env, "STATE_FILE", DEFAULT_STATE_PATH),
        notifier=notifier,
        smtp_host=_get(env, "SMTP_HOST"),
        smtp_port=smtp_port,
        smtp_username=_get(env, "SMTP_USERNAME"),
        smtp_password=_get(env, "SMTP_PASSWORD"),
        email_from=_get(env, "EMAIL_FROM"),
        run_once=parse_bool(_get(env, "RUN_ONCE")),
        dry_run=parse_bool(_get(env, "DRY_RUN")),
        log_level=_get(env, "LOG_LEVEL", "INFO").upper(),
    )

    if notifier == "email":
        missing = [
            name for name, value in (
                ("SMTP_HOST", settings.smtp_host),
                ("SMTP_USERNAME", settings.smtp_username),
                ("SMTP_PASSWORD", settings.smtp_password),
                ("EMAIL_FROM", settings.email_from),
            ) if not value
        ]
        if missing:
            problems.append(f"Missing email settings: {', '.join(missing)}")

    if problems:
        raise ConfigError(problems)

    if not recipients:
        logger.warning("No recipients configured, notifications will be skipped")

    logger.debug("Configuration loaded and validated successfully")
    return settings
