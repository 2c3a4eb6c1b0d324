"""
Centralized settings and path configuration for the pricing engine.
"""
import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional


def get_project_root() -> Path:
    """Get the project root directory (where pyproject.toml lives)."""
    env_root = os.getenv("ESIM_PRICING_ROOT")
    if env_root:
        return Path(env_root).resolve()

    current = Path(__file__).resolve()
    for parent in current.parents:
        if (parent / 'pyproject.toml').exists():
            return parent
    # Fallback to 4 levels up from this file
    return Path(__file__).resolve().parent.parent.parent.parent


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    return int(raw)


@dataclass
class Settings:
    """Application settings with sensible defaults."""

    # Project paths
    project_root: Path
    data_dir: Path

    # Tables
    rules_csv: Path
    overrides_csv: Path
    plans_csv: Path
    agents_csv: Path

    # Pricing constants
    default_multiplier: float = 4.0  # 300% markup
    min_margin: float = 1.05
    import_batch_size: int = 500
    import_error_sample: int = 5

    # Last-resort markups keyed by agent partner type
    partner_multipliers: dict[str, float] = field(
        default_factory=lambda: {'api_partner': 1.3}
    )

    @classmethod
    def load(cls, project_root: Optional[Path] = None) -> 'Settings':
        """Load settings from the project structure and environment."""
        root = project_root or get_project_root()

        data_env = os.getenv("ESIM_PRICING_DATA_DIR")
        data_dir = Path(data_env) if data_env else root / 'data'

        return cls(
            project_root=root,
            data_dir=data_dir,
            rules_csv=data_dir / 'pricing_rules.csv',
            overrides_csv=data_dir / 'agent_pricing.csv',
            plans_csv=data_dir / 'plans.csv',
            agents_csv=data_dir / 'agents.csv',
            default_multiplier=_env_float("ESIM_DEFAULT_MULTIPLIER", 4.0),
            min_margin=_env_float("ESIM_MIN_MARGIN", 1.05),
            import_batch_size=_env_int("ESIM_IMPORT_BATCH_SIZE", 500),
            import_error_sample=_env_int("ESIM_IMPORT_ERROR_SAMPLE", 5),
        )


# Default settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def reset_settings():
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
