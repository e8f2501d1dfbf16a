# ================================================================
#  SOS INVENTORY AUTH MODULE
#  ---------------------------------------------------------------
#  - Resolve the bearer token for SOS API calls
#  - Build request headers shared by inventory and process fetches
# ================================================================

import logging
from typing import Dict, Optional

import config

logger = logging.getLogger("sos_auth")


class SosAuthError(RuntimeError):
    """Raised when the SOS API rejects our credentials or none are configured."""


class SosAuth:
    def __init__(self, api_key: Optional[str] = None):
        self._api_key = api_key

    def get_bearer_token(self) -> str:
        token = (self._api_key if self._api_key is not None else config.SOS_API_KEY).strip()
        if not token:
            logger.error("[Auth] SOS_API_KEY is not configured")
            raise SosAuthError("SOS API key not configured. Set SOS_API_KEY in the environment or .env")
        return token

    def auth_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.get_bearer_token()}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
