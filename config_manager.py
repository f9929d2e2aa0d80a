"""
Configuration Manager

Persists registry definitions and application settings as JSON in the
platform configuration directory.
"""

import hashlib
import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Dict, List, Any, Optional
from datetime import datetime
import logging

from registry_errors import ConfigurationError
from registry_models import RegistryRef, RegistryType

logger = logging.getLogger(__name__)

APP_NAME = "registry-catalog-sync"


class ConfigManager:
    """Manages persistent configuration storage for registries and settings"""

    def __init__(self, app_name: str = APP_NAME, config_dir: Optional[Path] = None):
        self.app_name = app_name
        self.config_dir = Path(config_dir) if config_dir else self._get_config_directory()
        self.config_file = self.config_dir / "config.json"
        self.backup_file = self.config_dir / "config.backup.json"

        self._ensure_config_directory()

    def _get_config_directory(self) -> Path:
        """Get platform-appropriate configuration directory"""
        system = platform.system().lower()

        if system == "darwin":
            config_base = Path.home() / "Library" / "Application Support"
        elif system == "windows":
            config_base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
        else:
            # Linux and anything unknown: ~/.config/app-name/
            config_base = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))

        return config_base / self.app_name

    def _ensure_config_directory(self) -> None:
        """Create configuration directory if it doesn't exist"""
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            # Credentials may be stored here
            os.chmod(self.config_dir, 0o700)
        except OSError as e:
            logger.error(f"Failed to create config directory {self.config_dir}: {e}")
            self.config_dir = Path(tempfile.gettempdir()) / self.app_name
            self.config_dir.mkdir(exist_ok=True)
            self.config_file = self.config_dir / "config.json"
            self.backup_file = self.config_dir / "config.backup.json"
            logger.warning(f"Using fallback config directory: {self.config_dir}")

    def _get_default_config(self) -> Dict[str, Any]:
        return {
            "version": "1.0",
            "last_updated": datetime.now().isoformat(),
            "app_settings": {
                "debug_enabled": False,
                "default_page_size": 100,
                "request_timeout": 30,
                "verify_tls": True
            },
            "registries": []
        }

    def _backup_existing_config(self) -> None:
        """Create backup of existing config before saving new one"""
        if self.config_file.exists():
            try:
                self.backup_file.write_text(self.config_file.read_text())
                logger.debug(f"Config backed up to {self.backup_file}")
            except OSError as e:
                logger.warning(f"Failed to backup config: {e}")

    def load_config(self) -> Dict[str, Any]:
        """Load configuration from file, return defaults if not found"""
        if not self.config_file.exists():
            logger.info("No config file found, using defaults")
            return self._get_default_config()

        try:
            with open(self.config_file, 'r') as f:
                config = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Config file corrupted (JSON error): {e}")
            return self._get_default_config()
        except OSError as e:
            logger.error(f"Unable to read config file {self.config_file}: {e}")
            return self._get_default_config()

        if not isinstance(config, dict) or "registries" not in config:
            logger.warning("Config file format invalid, using defaults")
            return self._get_default_config()

        defaults = self._get_default_config()["app_settings"]
        config["app_settings"] = {**defaults, **config.get("app_settings", {})}
        logger.debug(f"Loaded {len(config['registries'])} registry configurations")
        return config

    def save_config(self, config: Dict[str, Any]) -> bool:
        """Save configuration to file"""
        config["last_updated"] = datetime.now().isoformat()
        self._backup_existing_config()

        try:
            with open(self.config_file, 'w') as f:
                json.dump(config, f, indent=2, sort_keys=True)
            os.chmod(self.config_file, 0o600)
        except OSError as e:
            logger.error(f"Failed to save config to {self.config_file}: {e}")
            return False

        logger.info(f"Config saved to {self.config_file} ({len(config.get('registries', []))} registries)")
        return True

    def get_app_settings(self) -> Dict[str, Any]:
        return self.load_config()["app_settings"]

    def get_registry_config(self, registry_id: str) -> Optional[Dict[str, Any]]:
        """Get configuration for a registry by id"""
        for registry in self.load_config().get("registries", []):
            if str(registry.get("id")) == str(registry_id):
                return registry
        return None

    def save_registry_config(self, registry_url: str, registry_name: str,
                             registry_type=RegistryType.CUSTOM, settings: Dict[str, Any] = None) -> str:
        """Save or update a registry keyed by its URL; returns the registry id"""
        config = self.load_config()

        registry_config = None
        for registry in config["registries"]:
            if registry["url"] == registry_url:
                registry_config = registry
                break

        if registry_config is None:
            registry_config = {
                "id": self._generate_registry_id(registry_url),
                "url": registry_url,
                "created": datetime.now().isoformat()
            }
            config["registries"].append(registry_config)

        registry_config.update(settings or {})
        registry_config.update({
            "name": registry_name,
            "type": int(RegistryType.parse(registry_type)),
            "last_updated": datetime.now().isoformat()
        })

        if self.save_config(config):
            logger.info(f"Registry config saved: {registry_name} ({registry_url})")
        return registry_config["id"]

    def _generate_registry_id(self, registry_url: str) -> str:
        """Stable id derived from the registry URL"""
        url_hash = hashlib.md5(registry_url.encode()).hexdigest()[:8]
        clean_url = registry_url.replace("https://", "").replace("http://", "")
        clean_url = clean_url.replace("/", "-").replace(".", "-").replace(":", "-")
        return f"{clean_url}-{url_hash}"

    def remove_registry_config(self, registry_id: str) -> bool:
        config = self.load_config()

        original_count = len(config["registries"])
        config["registries"] = [r for r in config["registries"] if str(r.get("id")) != str(registry_id)]

        if len(config["registries"]) < original_count:
            return self.save_config(config)

        logger.warning(f"Registry config not found for removal: {registry_id}")
        return False

    def list_configured_registries(self) -> List[Dict[str, Any]]:
        return self.load_config().get("registries", [])

    def registry_ref(self, registry_id: str) -> RegistryRef:
        """RegistryRef for a configured registry"""
        registry = self.get_registry_config(registry_id)
        if registry is None:
            raise ConfigurationError(f"Registry {registry_id} is not configured")
        try:
            registry_type = RegistryType.parse(registry.get("type"))
        except ValueError as e:
            raise ConfigurationError(f"Registry {registry_id} has an invalid type", e) from e
        return RegistryRef(id=str(registry["id"]), type=registry_type, name=registry.get("name", ""))

    def get_config_info(self) -> Dict[str, Any]:
        """Get information about the configuration system"""
        config = self.load_config()

        return {
            "config_dir": str(self.config_dir),
            "config_file": str(self.config_file),
            "config_exists": self.config_file.exists(),
            "backup_exists": self.backup_file.exists(),
            "version": config.get("version", "unknown"),
            "last_updated": config.get("last_updated", "never"),
            "registry_count": len(config.get("registries", []))
        }
