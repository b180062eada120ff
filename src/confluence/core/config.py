"""
Configuration Management - Environment-aware fusion settings with validation
"""

import os
import json
import logging
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


class Config:
    def __init__(self, config_file: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None):
        # Load base configuration
        self.settings = self._load_base_config()

        # Load environment-specific overrides
        self._load_environment_config()

        # Load from file if specified
        if config_file:
            self._load_config_file(config_file)

        # Apply environment variable overrides
        self._load_environment_variables()

        # Explicit overrides win over everything else
        if overrides:
            self.settings.update(overrides)

        # Validate configuration
        self._validate_config()

        logger.info(f"Configuration loaded: {self._get_config_summary()}")

    def _load_base_config(self) -> Dict[str, Any]:
        """Load base configuration with defaults"""
        return {
            # Correlation matrix
            'correlation_window': 100,  # samples per domain pair

            # Convergence detection
            'total_domains': 21,
            'minimum_alignment': 10,
            'convergence_threshold': 0.90,  # minimum statistical improbability
            'event_retention_days': 30,

            # Phase synchronization
            'phase_sync_tolerance': 0.1,  # circular phase distance
            'phase_event_history': 500,

            # Calibration
            'calibration_min_samples': 30,
            'calibration_retention_days': 90,
            'calibration_gate': 50,  # resolved events before the engine counts as calibrated

            # Fusion
            'confidence_cap': 0.95,
            'vote_threshold': 0.1,
            'direction_threshold': 0.15,
            'time_horizon_seconds': 5.0,
            'base_learning_rate': 0.1,

            # Bounded histories
            'prediction_history_size': 1000,
            'price_history_size': 500,
            'outcome_history_size': 100,
            'event_history_size': 1000,
            'convergence_history_size': 1000,
            'calibration_history_size': 1000,

            # System operational settings
            'log_level': 'INFO',

            # Environment
            'environment': os.getenv('FUSION_ENV', 'development')
        }

    def _load_environment_config(self):
        """Load environment-specific configuration"""
        try:
            env = self.settings['environment']
            config_file = f"config/{env}.json"

            if os.path.exists(config_file):
                self._load_config_file(config_file)
                logger.info(f"Loaded {env} environment configuration")
            else:
                logger.debug(f"No {env} environment config found, using defaults")

        except Exception as e:
            logger.warning(f"Error loading environment config: {e}")

    def _load_config_file(self, config_file: str):
        """Load configuration from JSON file"""
        try:
            with open(config_file, 'r') as f:
                file_config = json.load(f)
                self.settings.update(file_config)
                logger.info(f"Loaded configuration from {config_file}")

        except Exception as e:
            logger.warning(f"Error loading config file {config_file}: {e}")

    def _load_environment_variables(self):
        """Load configuration from environment variables"""
        env_mappings = {
            'FUSION_LOG_LEVEL': 'log_level',
            'FUSION_MINIMUM_ALIGNMENT': 'minimum_alignment',
            'FUSION_CORRELATION_WINDOW': 'correlation_window',
            'FUSION_CONVERGENCE_THRESHOLD': 'convergence_threshold',
            'FUSION_PHASE_SYNC_TOLERANCE': 'phase_sync_tolerance',
            'FUSION_CONFIDENCE_CAP': 'confidence_cap',
            'FUSION_CALIBRATION_GATE': 'calibration_gate',
            'FUSION_PREDICTION_HISTORY_SIZE': 'prediction_history_size',
            'FUSION_TIME_HORIZON_SECONDS': 'time_horizon_seconds'
        }
        int_keys = ['minimum_alignment', 'correlation_window', 'calibration_gate', 'prediction_history_size']
        float_keys = ['convergence_threshold', 'phase_sync_tolerance', 'confidence_cap', 'time_horizon_seconds']

        for env_var, config_key in env_mappings.items():
            if env_var in os.environ:
                try:
                    value = os.environ[env_var]
                    # Try to convert to appropriate type
                    if config_key in int_keys:
                        value = int(value)
                    elif config_key in float_keys:
                        value = float(value)
                    elif config_key == 'log_level':
                        value = value.upper()

                    self.settings[config_key] = value
                    logger.info(f"Applied environment override: {config_key} = {value}")

                except Exception as e:
                    logger.warning(f"Error applying environment variable {env_var}: {e}")

    def _validate_config(self):
        """Validate configuration settings"""
        validations = [
            ('correlation_window', lambda x: x >= 2, "Correlation window must be >= 2 samples"),
            ('minimum_alignment', lambda x: 2 <= x <= self.settings['total_domains'],
             "Minimum alignment must be between 2 and total_domains"),
            ('convergence_threshold', lambda x: 0 < x < 1, "Convergence threshold must be 0-1"),
            ('phase_sync_tolerance', lambda x: 0 < x <= 0.5, "Phase sync tolerance must be 0-0.5"),
            ('confidence_cap', lambda x: 0 < x < 1, "Confidence cap must be below certainty"),
            ('calibration_gate', lambda x: x >= 1, "Calibration gate must be >= 1 event"),
            ('calibration_min_samples', lambda x: x >= 1, "Calibration minimum must be >= 1 sample"),
            ('prediction_history_size', lambda x: x >= 1, "Prediction history must hold at least 1 entry"),
            ('convergence_history_size', lambda x: x >= 1, "Convergence history must hold at least 1 event"),
            ('calibration_history_size', lambda x: x >= self.settings['calibration_min_samples'],
             "Calibration history must hold at least calibration_min_samples records"),
            ('log_level', lambda x: str(x).upper() in LOG_LEVELS, "Unknown log level"),
            ('price_history_size', lambda x: x >= 20, "Price history must hold at least 20 points"),
            ('direction_threshold', lambda x: 0 <= x < 1, "Direction threshold must be 0-1"),
            ('vote_threshold', lambda x: 0 <= x < 1, "Vote threshold must be 0-1"),
            ('base_learning_rate', lambda x: 0 < x <= 1, "Learning rate must be 0-1"),
            ('time_horizon_seconds', lambda x: x > 0, "Time horizon must be positive")
        ]

        for key, validator, message in validations:
            if key in self.settings:
                if not validator(self.settings[key]):
                    raise ValueError(f"Configuration validation failed: {message}")

    def _get_config_summary(self) -> str:
        """Get a summary of current configuration"""
        summary_keys = [
            'environment', 'minimum_alignment', 'convergence_threshold',
            'confidence_cap', 'calibration_gate'
        ]
        summary = {k: self.settings.get(k) for k in summary_keys}
        return str(summary)

    def get(self, key: str, default=None):
        """Get configuration value"""
        return self.settings.get(key, default)

    def update_setting(self, key: str, value: Any):
        """Update a single setting and re-validate"""
        previous = self.settings.get(key)
        self.settings[key] = value
        try:
            self._validate_config()
        except ValueError:
            self.settings[key] = previous
            raise
        logger.debug(f"Updated setting {key}: {previous} -> {value}")

    def as_dict(self) -> Dict[str, Any]:
        return dict(self.settings)

    def get_convergence_config(self) -> Dict[str, Any]:
        """Get convergence-specific configuration"""
        return {
            'total_domains': self.get('total_domains'),
            'minimum_alignment': self.get('minimum_alignment'),
            'convergence_threshold': self.get('convergence_threshold'),
            'event_retention_days': self.get('event_retention_days'),
            'convergence_history_size': self.get('convergence_history_size')
        }

    def get_calibration_config(self) -> Dict[str, Any]:
        """Get calibration-specific configuration"""
        return {
            'calibration_min_samples': self.get('calibration_min_samples'),
            'calibration_retention_days': self.get('calibration_retention_days'),
            'calibration_gate': self.get('calibration_gate'),
            'calibration_history_size': self.get('calibration_history_size')
        }
