"""
Configuration loading and logging setup.
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = 'LEARNER_ENGAGEMENT_CONFIG'
WORKING_CONFIG_PATH = Path('config') / 'settings.yaml'
SOURCE_CONFIG_PATH = Path(__file__).resolve().parents[2] / 'config' / 'settings.yaml'


def default_config_path() -> Path:
    """
    Config file used when none is given.

    ``$LEARNER_ENGAGEMENT_CONFIG`` wins, then ``config/settings.yaml`` under
    the working directory, then the one in a source checkout.
    """
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return Path(override)
    for candidate in (WORKING_CONFIG_PATH, SOURCE_CONFIG_PATH):
        if candidate.is_file():
            return candidate
    return WORKING_CONFIG_PATH



def get_default_config() -> Dict[str, Any]:
    """Get default configuration for the system."""
    return {
        'camera': {
            'device_id': 0,
            'width': 1280,
            'height': 720,
            'fps': 30,
            'buffer_size': 4
        },
        'models': {
            'directory': 'models',
            'device': 'auto',
            'artifacts': {
                'face_detector': 'face_detector',
                'emotion': 'emotion_classifier.pth',
                'gaze': 'gaze_estimator.pth',
                'posture': 'posture_analyzer.pth',
                'micro_expression': 'micro_expression.pth',
                'cognitive_load': 'cognitive_load.pth',
                'engagement': 'engagement_fusion.pth'
            }
        },
        'analysis': {
            'interval_ms': 100,
            'max_workers': 5,
            'max_missed_frames': 50,
            'frame_timeout_s': 0.05,
            'face_confidence': 0.5
        },
        'history': {
            'capacity': 1000,
            'gaze_trail_limit': 100
        },
        'calibration': {
            'duration_ms': 30000,
            'profiles_path': None,
            'coefficients': {
                'engagement_pivot': 0.7,
                'attention_pivot': 0.6,
                'suppression_pivot': 0.5,
                'tolerance_pivot': 0.5,
                'personal_weight': 0.5,
                'reference_engagement': 0.7,
                'reference_attention': 0.8
            }
        },
        'events': {
            'high_fatigue': 0.8,
            'low_attention': 0.3,
            'cognitive_overload': 0.9
        },
        'heatmap': {
            'width': 1280,
            'height': 720,
            'radius': 50,
            'sigma': 20.0,
            'default_duration_ms': 60000
        },
        'logging': {
            'level': 'INFO',
            'log_file': None,
            'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        }
    }


def merge_config(base: Dict[str, Any], override: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Recursively merge ``override`` on top of a copy of ``base``."""
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from a YAML file, merged over the defaults.

    Args:
        config_path: Path to configuration file (defaults to ``default_config_path()``)

    Returns:
        Complete configuration dictionary
    """
    path = Path(config_path) if config_path else default_config_path()
    try:
        with open(path, 'r') as f:
            loaded = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning(f"Config file {path} not found, using default configuration")
        return get_default_config()
    except yaml.YAMLError as e:
        logger.error(f"Error loading config file {path}: {e}")
        return get_default_config()

    if not isinstance(loaded, dict):
        logger.error(f"Config file {path} does not contain a mapping, using defaults")
        return get_default_config()
    return merge_config(get_default_config(), loaded)


def setup_logging(config: Optional[Dict[str, Any]] = None):
    """Setup logging configuration."""
    log_config = merge_config(get_default_config()['logging'], (config or {}).get('logging'))
    handlers = [logging.StreamHandler()]

    log_file = log_config.get('log_file')
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, str(log_config['level']).upper(), logging.INFO),
        format=log_config['format'],
        handlers=handlers
    )
