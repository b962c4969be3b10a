"""
Shared helper functions and utilities.

Logging setup and loading, saving and validation of the tracking
configuration.
"""

import json
import logging
import os
from dataclasses import asdict

from .confidence import ConfidenceConfig
from .session import SessionConfiguration
from .tracking.descriptor import DescriptorConfiguration
from .tracking.feature import DetectorConfiguration
from .tracking.matching import MatcherConfiguration
from .tracking.reference import ReferenceConfiguration
from .tracking.verification import VerifierConfiguration

CONFIG_SECTIONS = {
    'detector': DetectorConfiguration,
    'descriptor': DescriptorConfiguration,
    'reference': ReferenceConfiguration,
    'matcher': MatcherConfiguration,
    'verifier': VerifierConfiguration,
    'confidence': ConfidenceConfig,
    'session': SessionConfiguration,
}


def setup_logging(level=logging.INFO):
    """Set up logging configuration.

    Args:
        level: Logging level (default: INFO)
    """
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    logger = logging.getLogger(__name__)
    logger.debug("Logging initialized")


def default_config():
    """Return the default configuration as a nested dictionary."""
    return {name: asdict(cls()) for name, cls in CONFIG_SECTIONS.items()}


def get_config(config_path=None):
    """Load configuration from file or return defaults.

    Sections present in the file are merged key by key over the defaults.

    Args:
        config_path: Path to JSON configuration file (optional)

    Returns:
        dict: Configuration dictionary
    """
    config = default_config()

    if config_path and os.path.exists(config_path):
        try:
            with open(config_path, 'r') as f:
                loaded_config = json.load(f)
        except (OSError, ValueError) as e:
            logging.warning(f"Failed to load config from {config_path}: {e}")
            return config

        for section, values in loaded_config.items():
            if section in config and isinstance(values, dict):
                config[section].update(values)
            else:
                logging.warning(f"Ignoring unknown config section '{section}'")
        logging.info(f"Configuration loaded from {config_path}")
    elif config_path:
        logging.warning(f"Config file {config_path} not found, using defaults")

    return config


def save_config(config, config_path):
    """Save configuration to file.

    Args:
        config: Configuration dictionary
        config_path: Path to save configuration file

    Returns:
        bool: True if save successful, False otherwise
    """
    try:
        with open(config_path, 'w') as f:
            json.dump(config, f, indent=4)
        logging.info(f"Configuration saved to {config_path}")
        return True
    except (OSError, TypeError) as e:
        logging.error(f"Failed to save config to {config_path}: {e}")
        return False


def validate_config(config):
    """Validate configuration parameters.

    Args:
        config: Configuration dictionary

    Returns:
        bool: True if valid, False otherwise
    """
    merged = default_config()
    for section, values in (config or {}).items():
        if section in merged and isinstance(values, dict):
            merged[section].update(values)

    detector = merged['detector']
    matcher = merged['matcher']
    verifier = merged['verifier']
    confidence = merged['confidence']
    errors = []

    if detector['grid_size'] <= 0 or detector['reference_grid_size'] <= 0:
        errors.append("detector grid sizes must be positive")
    if detector['max_points'] <= 0 or detector['reference_max_points'] <= 0:
        errors.append("detector point budgets must be positive")
    if merged['descriptor']['patch_size'] <= 0 or merged['descriptor']['sample_stride'] <= 0:
        errors.append("descriptor patch_size and sample_stride must be positive")
    if not 0.0 < matcher['ratio_threshold'] <= 1.0:
        errors.append("matcher.ratio_threshold must be in (0, 1]")
    if verifier['sample_size'] < 2:
        errors.append("verifier.sample_size must be at least 2")
    if verifier['scale_tolerance'] <= 0:
        errors.append("verifier.scale_tolerance must be positive")
    if confidence['stop_threshold'] > confidence['start_threshold']:
        errors.append("confidence.stop_threshold must not exceed start_threshold")
    if confidence['history_size'] <= 0 or confidence['required_frames'] <= 0:
        errors.append("confidence.history_size and required_frames must be positive")
    if merged['session']['min_frame_interval'] < 0:
        errors.append("session.min_frame_interval must not be negative")

    for message in errors:
        logging.error(f"Invalid configuration: {message}")
    if errors:
        return False

    logging.info("Configuration validated successfully")
    return True
