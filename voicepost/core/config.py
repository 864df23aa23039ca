"""Configuration management for voicepost.

This module provides configuration constants and the :class:`AppConfig` class
which merges defaults with values from an optional YAML file
(``.voicepost.yml`` in the working directory).

Capture constants
-----------------
- ``SAMPLE_RATE``        – fixed capture rate in Hz (default 48 000).  The
  same value is used when decoding and encoding; the device is never asked
  for its native rate.
- ``CHANNELS``           – number of input channels (mono)
- ``TIMESLICE_MS``       – capture chunk and metering cadence in ms
- ``ECHO_CANCELLATION``, ``NOISE_SUPPRESSION``, ``AUTO_GAIN_CONTROL`` –
  device processing flags requested on capture

Upload / render constants
-------------------------
- ``API_BASE_URL``       – root of the posting API
- ``API_TIMEOUT``        – HTTP timeout in seconds
- ``RENDER_TIMEOUT``     – seconds an offline effect render may take
- ``PREVIEW_BINS``       – number of peaks in the waveform preview

Configuration file
------------------
All constants above can be overridden at runtime via ``.voicepost.yml``
placed in the project root:

.. code-block:: yaml

    capture:
      sample_rate: 48000
      timeslice_ms: 100
      device_id: 3
    api:
      base_url: https://voices.example.test
      timeout: 30
      session_cookie: "s%3Aabc..."
    render:
      timeout: 60
    preview:
      bins: 64
    drafts_dir: drafts/
    log:
      file: posts.jsonl
"""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .models import CaptureConstraints

# Capture parameters
SAMPLE_RATE = 48000
CHANNELS = 1
TIMESLICE_MS = 100
ECHO_CANCELLATION = True
NOISE_SUPPRESSION = True
AUTO_GAIN_CONTROL = True

# Sample width in bytes of captured int16 frames
SAMPLE_WIDTH_INT16 = 2

# Posting API
API_BASE_URL = 'http://localhost:5000'
API_TIMEOUT = 30.0
POSTS_PATH = '/api/posts'
COOKIE_NAME = 'connect.sid'

# Offline rendering
RENDER_TIMEOUT = 60.0

# Waveform preview
PREVIEW_BINS = 64

CONFIG_FILE = '.voicepost.yml'
DRAFTS_DIR = 'drafts/'

# Local post log
LOG_FILE = 'posts.jsonl'

_SECTIONS = {
    'capture': (
        'sample_rate', 'channels', 'timeslice_ms', 'echo_cancellation',
        'noise_suppression', 'auto_gain_control', 'device_id',
    ),
    'api': ('base_url', 'timeout', 'session_cookie', 'cookie_name'),
    'render': ('timeout',),
    'preview': ('bins',),
}


class AppConfig:
    """Application configuration management."""

    def __init__(self, config_path: Optional[Path] = None) -> None:
        """Initialize configuration with defaults.

        Args:
            config_path: Explicit YAML file.  Defaults to ``.voicepost.yml``
                in the current working directory.
        """
        self._config: Dict[str, Any] = {
            'capture.sample_rate': SAMPLE_RATE,
            'capture.channels': CHANNELS,
            'capture.timeslice_ms': TIMESLICE_MS,
            'capture.echo_cancellation': ECHO_CANCELLATION,
            'capture.noise_suppression': NOISE_SUPPRESSION,
            'capture.auto_gain_control': AUTO_GAIN_CONTROL,
            'capture.device_id': None,
            'api.base_url': API_BASE_URL,
            'api.timeout': API_TIMEOUT,
            'api.session_cookie': None,
            'api.cookie_name': COOKIE_NAME,
            'render.timeout': RENDER_TIMEOUT,
            'preview.bins': PREVIEW_BINS,
            'drafts_dir': DRAFTS_DIR,
        }
        self._config_path = Path(config_path) if config_path else Path.cwd() / CONFIG_FILE
        self._load_yaml_config()

    def _load_yaml_config(self) -> None:
        """Load optional YAML configuration."""
        if not self._config_path.exists():
            return

        content = yaml.safe_load(self._config_path.read_text(encoding='utf-8'))
        if not content:
            return

        if not isinstance(content, dict):
            raise ValueError(f"Configuration in {self._config_path.name} must be a mapping")

        for section, keys in _SECTIONS.items():
            values = content.get(section)
            if isinstance(values, dict):
                for key in keys:
                    if key in values:
                        self._config[f'{section}.{key}'] = values[key]

        for key, value in content.items():
            if key in _SECTIONS:
                continue
            self._config[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value.

        Args:
            key: Configuration key, dotted for sectioned values
                (``'capture.sample_rate'``)
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        return self._config.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set configuration value.

        Args:
            key: Configuration key
            value: Configuration value
        """
        self._config[key] = value

    def capture_constraints(self) -> CaptureConstraints:
        """Build the device request from the ``capture`` section."""
        device_id = self._config.get('capture.device_id')
        return CaptureConstraints(
            sample_rate=int(self._config['capture.sample_rate']),
            channels=int(self._config['capture.channels']),
            echo_cancellation=bool(self._config['capture.echo_cancellation']),
            noise_suppression=bool(self._config['capture.noise_suppression']),
            auto_gain_control=bool(self._config['capture.auto_gain_control']),
            device_id=int(device_id) if device_id is not None else None,
        )

    def get_drafts_dir(self) -> Path:
        """Get drafts directory as Path object, creating it if needed.

        Returns:
            Drafts directory path
        """
        path = Path(self._config.get('drafts_dir', DRAFTS_DIR))
        path.mkdir(parents=True, exist_ok=True)
        return path

    def get_log_path(self, base_dir: Optional[Path] = None) -> Path:
        """Return the post log file path.

        The log file name is taken from the ``log.file`` key in
        ``.voicepost.yml`` when present, otherwise from the
        :data:`LOG_FILE` constant.  The file is placed inside *base_dir*
        (defaults to the drafts directory).

        Args:
            base_dir: Directory that will contain the log file.

        Returns:
            Path including the log filename.
        """
        log_config = self._config.get('log')
        log_file = LOG_FILE
        if isinstance(log_config, dict):
            log_file = log_config.get('file', LOG_FILE)
        base = Path(base_dir) if base_dir is not None else self.get_drafts_dir()
        return base / log_file
