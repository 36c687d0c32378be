"""
Configuration manager for the timed quiz client.
"""
import logging
import os
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from .models import ClientSettings


class ConfigManager:
    """Manages client configuration: authority location, loop intervals and persistence."""

    # Default configuration values
    DEFAULT_AUTHORITY_URL = "http://localhost:4000"
    DEFAULT_TICK_INTERVAL = 1.0
    DEFAULT_RESYNC_INTERVAL = 10.0
    DEFAULT_SESSION_FILE = "./data/session.json"
    DEFAULT_SESSION_KEY = "quiz_session_id"

    # Validation limits
    MIN_TICK_INTERVAL = 0.01
    MAX_TICK_INTERVAL = 5.0
    MIN_RESYNC_INTERVAL = 1.0
    MAX_RESYNC_INTERVAL = 300.0  # 5 minutes

    AUTHORITY_URL_ENV = "QUIZ_AUTHORITY_URL"

    def __init__(self):
        """Initialize ConfigManager with default settings."""
        self.logger = logging.getLogger(__name__)
        self._settings = ClientSettings()

    def get_client_settings(self) -> ClientSettings:
        """
        Get a copy of the current client settings.

        Returns:
            ClientSettings object with current configuration
        """
        return ClientSettings(
            authority_url=self._settings.authority_url,
            tick_interval=self._settings.tick_interval,
            resync_interval=self._settings.resync_interval,
            session_file=self._settings.session_file,
            session_key=self._settings.session_key,
        )

    def apply_config(self, config: Optional[Dict[str, Any]]) -> List[str]:
        """
        Apply the 'client' section of a configuration dictionary.

        Invalid values are logged and skipped, leaving the previous setting.
        The QUIZ_AUTHORITY_URL environment variable overrides the file value.

        Returns:
            List of error messages for settings that were rejected
        """
        errors = []
        client_config = (config or {}).get('client', {})

        setters = [
            ('authority_url', self.set_authority_url),
            ('tick_interval', self.set_tick_interval),
            ('resync_interval', self.set_resync_interval),
            ('session_file', self.set_session_file),
            ('session_key', self.set_session_key),
        ]
        for key, setter in setters:
            if key in client_config:
                result = setter(client_config[key])
                if not result['success']:
                    errors.append(result['error'])

        env_url = os.getenv(self.AUTHORITY_URL_ENV)
        if env_url:
            result = self.set_authority_url(env_url)
            if not result['success']:
                errors.append(result['error'])

        return errors

    def _fail(self, error_msg: str, user_message: str) -> Dict[str, Any]:
        self.logger.error(error_msg)
        return {
            'success': False,
            'error': error_msg,
            'user_message': user_message
        }

    def set_authority_url(self, url: str) -> Dict[str, Any]:
        """
        Set the base URL of the session authority.

        Args:
            url: http or https URL

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(url, str):
            return self._fail(
                f"Authority URL must be a string, got {type(url).__name__}",
                f"❌ Invalid input: Expected a URL, got {type(url).__name__}"
            )

        parsed = urlparse(url.strip())
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            return self._fail(
                f"Authority URL must be an http(s) URL: {url!r}",
                f"❌ Invalid URL: {url}"
            )

        self._settings.authority_url = url.strip().rstrip('/')
        self.logger.info(f"Authority URL set to {self._settings.authority_url}")
        return {
            'success': True,
            'message': f"Authority URL set to {self._settings.authority_url}",
            'user_message': f"✅ Authority set to {self._settings.authority_url}"
        }

    def _set_interval(self, name: str, value: Any, minimum: float, maximum: float) -> Dict[str, Any]:
        label = name.replace('_', ' ')
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return self._fail(
                f"{label.capitalize()} must be a number, got {type(value).__name__}",
                f"❌ Invalid input: Expected a number, got {type(value).__name__}"
            )

        if value < minimum:
            return self._fail(
                f"{label.capitalize()} must be at least {minimum} seconds",
                f"❌ Interval too short: Minimum is {minimum} seconds"
            )

        if value > maximum:
            return self._fail(
                f"{label.capitalize()} cannot exceed {maximum} seconds",
                f"❌ Interval too long: Maximum is {maximum} seconds"
            )

        setattr(self._settings, name, float(value))
        self.logger.info(f"{label.capitalize()} set to {value} seconds")
        return {
            'success': True,
            'message': f"{label.capitalize()} set to {value} seconds",
            'user_message': f"✅ {label.capitalize()} set to {value} seconds"
        }

    def set_tick_interval(self, seconds: float) -> Dict[str, Any]:
        """Set the period of the local countdown loop."""
        return self._set_interval('tick_interval', seconds, self.MIN_TICK_INTERVAL, self.MAX_TICK_INTERVAL)

    def set_resync_interval(self, seconds: float) -> Dict[str, Any]:
        """Set the period of the authority resync loop."""
        return self._set_interval('resync_interval', seconds, self.MIN_RESYNC_INTERVAL, self.MAX_RESYNC_INTERVAL)

    def set_session_file(self, path: str) -> Dict[str, Any]:
        """Set the JSON file where the session id is persisted."""
        if not isinstance(path, str) or not path.strip():
            return self._fail(
                "Session file must be a non-empty path string",
                "❌ Session file path cannot be empty"
            )

        self._settings.session_file = path.strip()
        self.logger.info(f"Session file set to {self._settings.session_file}")
        return {
            'success': True,
            'message': f"Session file set to {self._settings.session_file}",
            'user_message': f"✅ Session file set to {self._settings.session_file}"
        }

    def set_session_key(self, key: str) -> Dict[str, Any]:
        """Set the key under which the session id is persisted."""
        if not isinstance(key, str) or not key.strip():
            return self._fail(
                "Session key must be a non-empty string",
                "❌ Session key cannot be empty"
            )

        self._settings.session_key = key.strip()
        self.logger.info(f"Session key set to {self._settings.session_key}")
        return {
            'success': True,
            'message': f"Session key set to {self._settings.session_key}",
            'user_message': f"✅ Session key set to {self._settings.session_key}"
        }

    def reset_to_defaults(self) -> None:
        """Reset all settings to their default values."""
        self._settings = ClientSettings(
            authority_url=self.DEFAULT_AUTHORITY_URL,
            tick_interval=self.DEFAULT_TICK_INTERVAL,
            resync_interval=self.DEFAULT_RESYNC_INTERVAL,
            session_file=self.DEFAULT_SESSION_FILE,
            session_key=self.DEFAULT_SESSION_KEY,
        )
        self.logger.info("All settings reset to default values")

    def validate_settings(self) -> Dict[str, Any]:
        """
        Validate current settings and return validation results.

        Returns:
            Dictionary with validation results and any issues found
        """
        validation_result = {
            "valid": True,
            "issues": []
        }

        settings = self._settings

        if not (self.MIN_TICK_INTERVAL <= settings.tick_interval <= self.MAX_TICK_INTERVAL):
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid tick interval: {settings.tick_interval}")

        if not (self.MIN_RESYNC_INTERVAL <= settings.resync_interval <= self.MAX_RESYNC_INTERVAL):
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid resync interval: {settings.resync_interval}")

        # A resync faster than the countdown would make the local clock pointless
        if settings.resync_interval < settings.tick_interval:
            validation_result["valid"] = False
            validation_result["issues"].append(
                f"Resync interval ({settings.resync_interval}s) shorter than tick interval "
                f"({settings.tick_interval}s)"
            )

        parsed = urlparse(settings.authority_url)
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid authority URL: {settings.authority_url}")

        return validation_result

    def get_settings_summary(self) -> str:
        """
        Get a formatted summary of current settings.

        Returns:
            Human-readable string describing current settings
        """
        return (
            f"Client Settings:\n"
            f"• Authority: {self._settings.authority_url}\n"
            f"• Tick: every {self._settings.tick_interval:g} s\n"
            f"• Resync: every {self._settings.resync_interval:g} s\n"
            f"• Session File: {self._settings.session_file}"
        )
