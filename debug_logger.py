"""
Debug Logger

File-based debug logging for registry operations. Keyword context is
appended to each message with credentials masked.
"""

import logging
from typing import Optional

DEFAULT_DEBUG_FILE = '/tmp/registry-catalog-sync-debug.log'

SENSITIVE_KEYWORDS = [
    'password', 'passwd', 'passphrase', 'pwd',
    'cached_token', 'access_token', 'refresh_token', 'bearer_token',
    'credential', 'creds',
    'authorization', 'authenticate',
    'secret', 'private', 'api_key', 'apikey', 'access_key',
    'registry_token', 'x-auth',
]


class DebugLogger:
    """Debug logger for sync operations"""

    def __init__(self, enabled: bool = False, verbose: bool = False, debug_file_path: Optional[str] = None):
        self.enabled = enabled
        self.verbose = verbose
        self.debug_file_path = debug_file_path or DEFAULT_DEBUG_FILE
        if enabled:
            logging.basicConfig(
                level=logging.DEBUG,
                format='%(asctime)s [SYNC-DEBUG] %(name)s: %(message)s',
                handlers=[logging.FileHandler(self.debug_file_path)]
            )
            if not verbose:
                # HTTP libraries are noisy at DEBUG
                logging.getLogger('httpcore').setLevel(logging.WARNING)
                logging.getLogger('httpx').setLevel(logging.WARNING)

            self.logger = logging.getLogger('Sync-Operations')
            mode_text = "VERBOSE" if verbose else "STANDARD"
            self.logger.info(f"=== Debug Mode ({mode_text}) Enabled - Logging to: {self.debug_file_path} ===")
        else:
            self.logger = None

    @staticmethod
    def mask_sensitive_data(key: str, value) -> str:
        """Mask values whose key looks like a credential"""
        if any(keyword in key.lower() for keyword in SENSITIVE_KEYWORDS):
            if isinstance(value, str) and len(value) > 8:
                # first and last 3 characters are kept for identification
                return f"{value[:3]}...{value[-3:]}"
            return "[REDACTED]"
        return str(value)

    def _format(self, message: str, **kwargs) -> str:
        safe_kwargs = {k: self.mask_sensitive_data(k, v) for k, v in kwargs.items()}
        context = ", ".join(f"{k}={v}" for k, v in safe_kwargs.items())
        return f"{message}" + (f" | {context}" if context else "")

    def debug(self, message: str, **kwargs):
        if self.enabled and self.logger:
            self.logger.debug(self._format(message, **kwargs))

    def info(self, message: str, **kwargs):
        if self.enabled and self.logger:
            self.logger.info(self._format(message, **kwargs))

    def error(self, message: str, **kwargs):
        if self.enabled and self.logger:
            self.logger.error(self._format(message, **kwargs))


# Disabled until the command line enables it
debug_logger = DebugLogger(enabled=False)
