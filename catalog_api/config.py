import os
import re
from typing import Mapping, Optional, Tuple

import bcrypt
from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError

from catalog_api.exceptions import MisconfiguredError
from catalog_api.logging_config import get_child_logger

logger = get_child_logger("config")

SHARED_SECRET = "shared_secret"
BEARER_TOKEN = "bearer_token"
KNOWN_SCHEMES = (SHARED_SECRET, BEARER_TOKEN)

DEFAULT_TOKEN_TTL = "15m"
DEFAULT_STORAGE_LOCATION = "data/products.json"

_TTL_PATTERN = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_TTL_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_ttl(value: str) -> int:
    """
    Parse a token lifetime such as "900", "15m" or "2h" into seconds.

    Raises:
        MisconfiguredError: If the value is not a positive duration
    """
    match = _TTL_PATTERN.match(value or "")
    if not match:
        raise MisconfiguredError(f"TOKEN_TTL must look like '900', '15m' or '1h', got {value!r}")
    seconds = int(match.group(1)) * _TTL_UNITS[match.group(2)]
    if seconds <= 0:
        raise MisconfiguredError("TOKEN_TTL must be greater than zero")
    return seconds


def parse_precedence(value: str) -> Tuple[str, ...]:
    schemes = tuple(part.strip().lower() for part in value.split(",") if part.strip())
    unknown = [s for s in schemes if s not in KNOWN_SCHEMES]
    if unknown:
        raise MisconfiguredError(
            f"AUTH_PRECEDENCE has unknown schemes {unknown}. "
            f"Valid options: {list(KNOWN_SCHEMES)}"
        )
    if len(set(schemes)) != len(schemes):
        raise MisconfiguredError("AUTH_PRECEDENCE lists a scheme more than once")
    if not schemes:
        raise MisconfiguredError("AUTH_PRECEDENCE must name at least one scheme")
    return schemes


def _env(environ: Mapping[str, str], name: str) -> Optional[str]:
    value = environ.get(name)
    if value is None or not value.strip():
        return None
    return value.strip()


class CatalogSettings(BaseModel):
    """
    Startup configuration for the catalog service.

    Built once (usually by from_env) and handed to the store, the guard and
    the token service. Nothing reads the environment after startup.
    """

    admin_secret: Optional[SecretStr] = None
    admin_secret_hash: Optional[SecretStr] = None
    admin_email: Optional[str] = None
    token_signing_key: Optional[SecretStr] = None
    token_ttl: int = Field(default=15 * 60, gt=0)  # seconds
    storage_location: str = DEFAULT_STORAGE_LOCATION
    auth_precedence: Tuple[str, ...] = (SHARED_SECRET, BEARER_TOKEN)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "CatalogSettings":
        """
        Build settings from environment variables.

        ADMIN_SECRET wins over ADMIN_PASSWORD when both are set.

        Raises:
            MisconfiguredError: If a value is present but unusable
        """
        environ = os.environ if environ is None else environ
        plaintext = _env(environ, "ADMIN_SECRET") or _env(environ, "ADMIN_PASSWORD")
        admin_email = _env(environ, "ADMIN_EMAIL")
        try:
            return cls(
                admin_secret=plaintext,
                admin_secret_hash=_env(environ, "ADMIN_SECRET_HASH"),
                admin_email=admin_email.lower() if admin_email else None,
                token_signing_key=_env(environ, "TOKEN_SIGNING_KEY"),
                token_ttl=parse_ttl(_env(environ, "TOKEN_TTL") or DEFAULT_TOKEN_TTL),
                storage_location=_env(environ, "STORAGE_LOCATION") or DEFAULT_STORAGE_LOCATION,
                auth_precedence=parse_precedence(
                    _env(environ, "AUTH_PRECEDENCE") or f"{SHARED_SECRET},{BEARER_TOKEN}"
                ),
            )
        except ValidationError as e:
            raise MisconfiguredError(f"Invalid catalog configuration: {e}") from e

    @property
    def has_shared_secret(self) -> bool:
        return self.admin_secret is not None or self.admin_secret_hash is not None

    @property
    def has_signing_key(self) -> bool:
        return self.token_signing_key is not None

    def require_admin_credentials(self) -> None:
        """
        Fail closed when no admin credential source is configured.

        Raises:
            MisconfiguredError: If neither a secret, a secret hash nor a
                signing key is configured, or the secret hash is not bcrypt
        """
        if not (self.has_shared_secret or self.has_signing_key):
            raise MisconfiguredError(
                "No admin credential configured: set ADMIN_SECRET_HASH, "
                "ADMIN_SECRET/ADMIN_PASSWORD or TOKEN_SIGNING_KEY"
            )
        if self.admin_secret_hash is not None:
            try:
                bcrypt.checkpw(b"", self.admin_secret_hash.get_secret_value().encode("utf-8"))
            except ValueError as e:
                raise MisconfiguredError("ADMIN_SECRET_HASH is not a valid bcrypt hash") from e
        unusable = [
            scheme for scheme in self.auth_precedence
            if (scheme == SHARED_SECRET and not self.has_shared_secret)
            or (scheme == BEARER_TOKEN and not self.has_signing_key)
        ]
        if unusable:
            logger.info(
                "Credential schemes listed in AUTH_PRECEDENCE are not configured",
                extra={"schemes": unusable},
            )
