"""
Configuration management (SSOT).

All config keys are defined here; no other module should invent config keys.

Key invariants:
- Tokens can always be supplied through the environment instead of the file
- Account mappings are read-only to the sync engine
- A run receives its settings through an explicit SyncContext, never globals
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .schemas.transactions import (
    AccountMapping,
    AccountType,
    DateRange,
    SyncContext,
    SyncOptions,
)


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class UpConfig:
    """Up Banking API configuration."""

    token: str
    base_url: str = "https://api.up.com.au/api/v1"
    # Transactions per page (Up allows up to 100)
    page_size: int = 100
    # Safety stop for pagination
    max_pages: int = 50


@dataclass
class YnabConfig:
    """YNAB API configuration."""

    token: str
    budget_id: str
    base_url: str = "https://api.ynab.com/v1"


@dataclass
class SyncSettings:
    """Sync behaviour settings."""

    # Default window when no explicit range is given (days back from today)
    default_sync_days: int = 1
    # Extra attempts for transient failures (network, rate limit)
    max_retries: int = 1
    # Fixed delay between attempts (seconds)
    retry_delay: float = 2.0
    # Only these account types are synced; others are skipped
    enabled_account_types: list[AccountType] = field(
        default_factory=lambda: [AccountType.TRANSACTIONAL, AccountType.SAVER]
    )
    # Accounts synced in parallel (1 = sequential)
    max_workers: int = 1
    # HTTP request timeout (seconds)
    request_timeout: int = 30


@dataclass
class CategorizationSettings:
    """Merchant rule categorization settings."""

    # Master switch (default OFF)
    enabled: bool = False
    # Below this confidence the category is dropped, the payee rename is kept
    min_confidence_threshold: float = 0.7


@dataclass
class Config:
    """Application configuration (SSOT)."""

    up: UpConfig
    ynab: YnabConfig
    account_mappings: list[AccountMapping] = field(default_factory=list)
    sync: SyncSettings = field(default_factory=SyncSettings)
    categorization: CategorizationSettings = field(default_factory=CategorizationSettings)
    state_db_path: Path = field(default_factory=lambda: Path("data/state.db"))
    # Merchant rules are stored per profile
    profile_id: str = "default"

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if not self.up.token:
            errors.append("up.token is required (or set UP_TOKEN)")
        if not self.ynab.token:
            errors.append("ynab.token is required (or set YNAB_TOKEN)")
        if not self.ynab.budget_id:
            errors.append("ynab.budget_id is required (or set YNAB_BUDGET_ID)")

        seen: set[str] = set()
        for mapping in self.account_mappings:
            if mapping.source_account_id in seen:
                errors.append(
                    f"Up account {mapping.source_account_id} is mapped more than once"
                )
            seen.add(mapping.source_account_id)

        if self.sync.default_sync_days < 0:
            errors.append("sync.default_sync_days must be >= 0")
        if self.sync.max_retries < 0:
            errors.append("sync.max_retries must be >= 0")
        if self.sync.retry_delay < 0:
            errors.append("sync.retry_delay must be >= 0")
        if self.sync.max_workers < 1:
            errors.append("sync.max_workers must be >= 1")

        threshold = self.categorization.min_confidence_threshold
        if not 0.0 <= threshold <= 1.0:
            errors.append("categorization.min_confidence_threshold must be between 0 and 1")

        return errors

    def require_valid(self) -> None:
        """Raise ConfigValidationError listing every problem found."""
        errors = self.validate()
        if errors:
            raise ConfigValidationError("; ".join(errors))

    def build_context(
        self,
        date_range: DateRange | None = None,
        options: SyncOptions | None = None,
    ) -> SyncContext:
        """Create the per-run context, defaulting to the configured window."""
        return SyncContext(
            mappings=tuple(self.account_mappings),
            date_range=date_range or DateRange.last_n_days(self.sync.default_sync_days),
            settings=self.sync,
            categorization=self.categorization,
            profile_id=self.profile_id,
            options=options or SyncOptions(),
        )


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name, "").strip().lower()
    if value in ("true", "1", "yes"):
        return True
    if value in ("false", "0", "no"):
        return False
    return default


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - UP_TOKEN
    - UP_API_URL
    - YNAB_TOKEN
    - YNAB_API_URL
    - YNAB_BUDGET_ID
    - UP_YNAB_STATE_DB
    - UP_YNAB_SYNC_DAYS
    - UP_YNAB_CATEGORIZATION_ENABLED (true/false)
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    # Up Banking
    up_data = data.get("up", {})
    up = UpConfig(
        token=os.environ.get("UP_TOKEN", up_data.get("token", "")),
        base_url=os.environ.get("UP_API_URL", up_data.get("base_url", "https://api.up.com.au/api/v1")),
        page_size=up_data.get("page_size", 100),
        max_pages=up_data.get("max_pages", 50),
    )

    # YNAB
    ynab_data = data.get("ynab", {})
    ynab = YnabConfig(
        token=os.environ.get("YNAB_TOKEN", ynab_data.get("token", "")),
        budget_id=os.environ.get("YNAB_BUDGET_ID", ynab_data.get("budget_id", "")),
        base_url=os.environ.get("YNAB_API_URL", ynab_data.get("base_url", "https://api.ynab.com/v1")),
    )

    # Sync settings
    sync_data = data.get("sync", {})
    sync_days = sync_data.get("default_sync_days", 1)
    sync_days_env = os.environ.get("UP_YNAB_SYNC_DAYS", "")
    if sync_days_env:
        try:
            sync_days = int(sync_days_env)
        except ValueError:
            raise ConfigValidationError(
                f"UP_YNAB_SYNC_DAYS must be an integer, got {sync_days_env!r}"
            ) from None

    try:
        account_types = [
            AccountType.parse(t)
            for t in sync_data.get("enabled_account_types", ["TRANSACTIONAL", "SAVER"])
        ]
    except ValueError as e:
        raise ConfigValidationError(f"sync.enabled_account_types: {e}") from e

    sync = SyncSettings(
        default_sync_days=sync_days,
        max_retries=sync_data.get("max_retries", 1),
        retry_delay=float(sync_data.get("retry_delay", 2.0)),
        enabled_account_types=account_types,
        max_workers=sync_data.get("max_workers", 1),
        request_timeout=sync_data.get("request_timeout", 30),
    )

    # Categorization
    cat_data = data.get("categorization", {})
    categorization = CategorizationSettings(
        enabled=_env_bool("UP_YNAB_CATEGORIZATION_ENABLED", cat_data.get("enabled", False)),
        min_confidence_threshold=float(cat_data.get("min_confidence_threshold", 0.7)),
    )

    # Account mappings
    mappings: list[AccountMapping] = []
    for index, mapping_data in enumerate(data.get("account_mappings") or []):
        try:
            mappings.append(AccountMapping.from_dict(mapping_data))
        except (KeyError, ValueError, TypeError) as e:
            raise ConfigValidationError(f"account_mappings[{index}] is invalid: {e}") from e

    state_db = os.environ.get("UP_YNAB_STATE_DB", data.get("state_db_path", "data/state.db"))

    return Config(
        up=up,
        ynab=ynab,
        account_mappings=mappings,
        sync=sync,
        categorization=categorization,
        state_db_path=Path(state_db),
        profile_id=str(data.get("profile_id", "default")),
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Up Banking → YNAB Sync Configuration
#
# Tokens may be left empty here and supplied via UP_TOKEN / YNAB_TOKEN.

up:
  token: "YOUR_UP_PERSONAL_ACCESS_TOKEN"
  base_url: "https://api.up.com.au/api/v1"
  page_size: 100                           # Transactions per page (max 100)
  max_pages: 50                            # Pagination safety stop

ynab:
  token: "YOUR_YNAB_PERSONAL_ACCESS_TOKEN"
  budget_id: "YOUR_BUDGET_ID"              # Or "last-used"
  base_url: "https://api.ynab.com/v1"

# One entry per Up account to sync (list ids with: up-ynab-sync accounts)
account_mappings:
  - source_account_id: "UP_ACCOUNT_ID"
    source_account_name: "Spending"
    source_account_type: "TRANSACTIONAL"   # TRANSACTIONAL or SAVER
    destination_account_id: "YNAB_ACCOUNT_ID"
    destination_account_name: "Up Spending"
    enabled: true

sync:
  default_sync_days: 1                     # Days back from today when no range given
  max_retries: 1                           # Extra attempts for network/rate-limit errors
  retry_delay: 2.0                         # Seconds between attempts
  enabled_account_types: ["TRANSACTIONAL", "SAVER"]
  max_workers: 1                           # Accounts synced in parallel
  request_timeout: 30

# Merchant rules (manage with: up-ynab-sync rules)
categorization:
  enabled: false
  min_confidence_threshold: 0.7            # Below this, keep payee but drop category

profile_id: "default"

# State database path
state_db_path: "data/state.db"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
