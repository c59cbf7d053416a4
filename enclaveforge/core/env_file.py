"""Environment file parsing: ``KEY=VALUE`` lines split into public and private.

Variables whose name ends in ``_PUBLIC`` are public (shipped as plaintext);
everything else is private (encrypted).  ``MNEMONIC`` is always dropped:
the platform injects its own.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

MNEMONIC_VAR = "MNEMONIC"
PUBLIC_SUFFIX = "_PUBLIC"
DOMAIN_VAR = "DOMAIN"


class EnvFileNotFoundError(FileNotFoundError):
    """Raised when an explicitly given environment file does not exist."""


class ParsedEnvironment(BaseModel):
    model_config = ConfigDict(frozen=True)

    public: dict[str, str] = {}
    private: dict[str, str] = {}
    mnemonic_filtered: bool = False


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def parse_env_text(text: str) -> dict[str, str]:
    """Parse ``.env`` text into an ordered mapping.

    Blank lines, ``#`` comments and lines without ``=`` are skipped.  A
    later duplicate key overrides an earlier one.
    """
    env: dict[str, str] = {}
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        key, sep, value = stripped.partition("=")
        if not sep:
            continue
        key = key.strip()
        if key.startswith("export "):
            key = key[len("export "):].strip()
        if key:
            env[key] = _strip_quotes(value.strip())
    return env


def read_env_file(path: Path) -> dict[str, str]:
    path = Path(path)
    if not path.is_file():
        raise EnvFileNotFoundError(f"Environment file not found: {path}")
    return parse_env_text(path.read_text("utf-8"))


def split_environment(env: dict[str, str]) -> ParsedEnvironment:
    """Separate public from private variables, dropping ``MNEMONIC``."""
    public: dict[str, str] = {}
    private: dict[str, str] = {}
    mnemonic_filtered = False
    for key, value in env.items():
        if key.upper() == MNEMONIC_VAR:
            mnemonic_filtered = True
            continue
        if key.endswith(PUBLIC_SUFFIX):
            public[key] = value
        else:
            private[key] = value
    if mnemonic_filtered:
        logger.info(
            "Removed %s from the environment; the platform provides its own", MNEMONIC_VAR
        )
    return ParsedEnvironment(
        public=public, private=private, mnemonic_filtered=mnemonic_filtered
    )


def parse_env_file(path: Path | None) -> ParsedEnvironment:
    """Read and split *path*; ``None`` yields an empty environment."""
    if path is None:
        return ParsedEnvironment()
    return split_environment(read_env_file(path))


def read_domain(path: Path | None) -> str | None:
    """Return the ``DOMAIN`` value from *path*, if the file and key exist."""
    if path is None or not Path(path).is_file():
        return None
    return parse_env_text(Path(path).read_text("utf-8")).get(DOMAIN_VAR) or None


def requires_tls(path: Path | None) -> bool:
    """TLS is needed when ``DOMAIN`` is set to anything but ``localhost``."""
    domain = read_domain(path)
    return bool(domain) and domain != "localhost"
