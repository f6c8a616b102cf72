"""Main configuration settings with TOML loading support."""

from dataclasses import dataclass, field, asdict, fields, replace
from typing import Optional, Dict, Any, Union
from pathlib import Path
import logging

try:
    import tomllib  # Python 3.11+
except ImportError:
    try:
        import tomli as tomllib  # Fallback for older Python
    except ImportError:
        tomllib = None

try:
    import tomli_w
except ImportError:
    tomli_w = None

from .defaults import (
    PLRNNConfig,
    KalmanFormerConfig,
    TrainingConfig,
    PRESETS,
    validate_plrnn_config,
    validate_kalmanformer_config,
    validate_training_config,
)

logger = logging.getLogger(__name__)


def _section_to_config(cls, data: Dict[str, Any]):
    """Build a config dataclass from a TOML table, ignoring unknown keys."""
    known = {f.name for f in fields(cls)}
    kwargs = {}
    for key, value in data.items():
        if key not in known:
            logger.warning("Ignoring unknown %s option '%s'", cls.__name__, key)
            continue
        kwargs[key] = tuple(value) if isinstance(value, list) else value
    return cls(**kwargs)


def _config_to_section(config) -> Dict[str, Any]:
    section = {}
    for key, value in asdict(config).items():
        if value is None:
            continue
        section[key] = list(value) if isinstance(value, tuple) else value
    return section


@dataclass
class Settings:
    """Main configuration settings for Cognitive Forecast.

    Bundles the engine and trainer configurations with run-level options.
    Can be loaded from TOML files for user customization while providing
    sensible defaults.
    """

    plrnn: PLRNNConfig = field(default_factory=PLRNNConfig)
    kalmanformer: KalmanFormerConfig = field(default_factory=KalmanFormerConfig)
    training: TrainingConfig = field(default_factory=TrainingConfig)

    # Reproducibility
    random_seed: Optional[int] = None

    # Advanced settings
    log_level: str = "INFO"
    output_dir: str = "output"
    verbose: bool = False

    def __post_init__(self):
        """Validate settings after initialization."""
        for warning in self.validate():
            logger.warning("Configuration warning: %s", warning)

    def validate(self):
        """Return the combined list of configuration warnings."""
        return (validate_plrnn_config(self.plrnn)
                + validate_kalmanformer_config(self.kalmanformer)
                + validate_training_config(self.training))

    @classmethod
    def from_preset(cls, preset: str) -> 'Settings':
        """Create settings from a preset configuration.

        Parameters
        ----------
        preset : str
            Preset name ('default', 'tuned', 'minimal')

        Returns
        -------
        Settings
            Settings object with preset values
        """
        if preset not in PRESETS:
            raise ValueError(f"Unknown preset '{preset}'. Available: {list(PRESETS.keys())}")

        plrnn, kalmanformer, training = PRESETS[preset]
        return cls(plrnn=replace(plrnn), kalmanformer=replace(kalmanformer), training=replace(training))

    @classmethod
    def from_toml(cls, toml_path: Union[str, Path]) -> 'Settings':
        """Load settings from TOML file.

        Parameters
        ----------
        toml_path : Union[str, Path]
            Path to TOML configuration file

        Returns
        -------
        Settings
            Settings object with values from TOML file

        Raises
        ------
        ImportError
            If tomllib is not available
        FileNotFoundError
            If TOML file doesn't exist
        """
        if tomllib is None:
            raise ImportError("tomllib not available. Install tomli for Python < 3.11")

        toml_path = Path(toml_path)
        if not toml_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {toml_path}")

        with open(toml_path, 'rb') as f:
            config_data = tomllib.load(f)

        settings_data: Dict[str, Any] = {}

        if 'plrnn' in config_data:
            settings_data['plrnn'] = _section_to_config(PLRNNConfig, config_data['plrnn'])
        if 'kalmanformer' in config_data:
            settings_data['kalmanformer'] = _section_to_config(KalmanFormerConfig, config_data['kalmanformer'])
        if 'training' in config_data:
            settings_data['training'] = _section_to_config(TrainingConfig, config_data['training'])
        if 'advanced' in config_data:
            settings_data.update(config_data['advanced'])

        # Also handle flat top-level keys
        for key, value in config_data.items():
            if not isinstance(value, dict):
                settings_data[key] = value

        return cls(**settings_data)

    def to_toml(self, toml_path: Union[str, Path]) -> None:
        """Save settings to TOML file.

        Parameters
        ----------
        toml_path : Union[str, Path]
            Path where to save TOML configuration file

        Raises
        ------
        ImportError
            If tomli_w is not available
        """
        if tomli_w is None:
            raise ImportError("tomli_w not available. Install tomli-w for TOML writing")

        advanced = {
            'log_level': self.log_level,
            'output_dir': self.output_dir,
            'verbose': self.verbose,
        }
        # TOML has no null value
        if self.random_seed is not None:
            advanced['random_seed'] = self.random_seed

        config_data = {
            'plrnn': _config_to_section(self.plrnn),
            'kalmanformer': _config_to_section(self.kalmanformer),
            'training': _config_to_section(self.training),
            'advanced': advanced,
        }

        toml_path = Path(toml_path)
        toml_path.parent.mkdir(parents=True, exist_ok=True)
        with open(toml_path, 'wb') as f:
            tomli_w.dump(config_data, f)

    def update(self, **kwargs) -> 'Settings':
        """Create new Settings with updated values.

        Parameters
        ----------
        **kwargs
            Settings fields to update

        Returns
        -------
        Settings
            New Settings object with updated values
        """
        return replace(self, **kwargs)


# Global configuration instance
_GLOBAL_CONFIG: Optional[Settings] = None

DEFAULT_CONFIG_PATHS = [
    Path('cognitive_forecast.toml'),
    Path('config.toml'),
    Path.home() / '.cognitive_forecast.toml',
]


def get_config(config_path: Optional[Union[str, Path]] = None,
               preset: Optional[str] = None,
               reload: bool = False) -> Settings:
    """Get global configuration settings.

    Parameters
    ----------
    config_path : Optional[Union[str, Path]]
        Path to TOML configuration file. If None, looks for default locations.
    preset : Optional[str]
        Preset configuration name ('default', 'tuned', 'minimal').
        Ignored if config_path is provided.
    reload : bool
        Force reload configuration even if already loaded

    Returns
    -------
    Settings
        Global configuration settings
    """
    global _GLOBAL_CONFIG

    if _GLOBAL_CONFIG is not None and not reload:
        return _GLOBAL_CONFIG

    if config_path is not None:
        _GLOBAL_CONFIG = Settings.from_toml(config_path)
    else:
        config_loaded = False
        for path in DEFAULT_CONFIG_PATHS:
            if path.exists():
                try:
                    _GLOBAL_CONFIG = Settings.from_toml(path)
                    config_loaded = True
                    break
                except (OSError, ValueError, TypeError) as e:
                    logger.warning("Could not load config from %s: %s", path, e)
                    continue

        if not config_loaded:
            _GLOBAL_CONFIG = Settings.from_preset(preset or 'default')

    if _GLOBAL_CONFIG.random_seed is not None:
        from .random_state import set_global_seed
        set_global_seed(_GLOBAL_CONFIG.random_seed)

    return _GLOBAL_CONFIG


def set_config(settings: Settings) -> None:
    """Set global configuration settings.

    Parameters
    ----------
    settings : Settings
        Settings object to use as global configuration
    """
    global _GLOBAL_CONFIG
    _GLOBAL_CONFIG = settings

    if settings.random_seed is not None:
        from .random_state import set_global_seed
        set_global_seed(settings.random_seed)
