"""Render the layered Dockerfile and the wrapper script.

Templates ship in ``enclaveforge/templates`` and use ``@@{name}``
placeholders so the shell's own ``$`` syntax passes through untouched.
Every placeholder must be supplied; a missing value is a KeyError, not an
empty string.
"""

from __future__ import annotations

import json
import string
from functools import lru_cache
from importlib import resources

from enclaveforge.models.image import LogRedirect

LAYERED_DOCKERFILE_TEMPLATE = "Dockerfile.layered.tmpl"
WRAPPER_SCRIPT_TEMPLATE = "compute-source-env.sh.tmpl"

CADDY_IMAGE = "caddy:2"

_TLS_SECTION = f"""
COPY tls-keygen /usr/local/bin/tls-keygen
COPY Caddyfile /etc/caddy/Caddyfile
COPY --from={CADDY_IMAGE} /usr/bin/caddy /usr/bin/caddy
"""


class _Template(string.Template):
    delimiter = "@@"


@lru_cache(maxsize=None)
def _load(name: str) -> _Template:
    text = resources.files("enclaveforge.templates").joinpath(name).read_text("utf-8")
    return _Template(text)


def render_dockerfile(
    *,
    base_image: str,
    original_cmd: list[str],
    original_user: str,
    log_redirect: LogRedirect | str,
    include_tls: bool,
    tool_version: str,
) -> str:
    """Render the layered Dockerfile.

    Parameters
    ----------
    base_image:
        Image the layer is built ``FROM``.
    original_cmd:
        The command the source image ran; emitted as a JSON array ``CMD``
        so the wrapper can ``exec "$@"`` it.
    original_user:
        Restored after the injected files are copied in.  Empty means the
        image ran as root and nothing is restored.
    log_redirect:
        ``off`` or ``always``.
    include_tls:
        Copy the TLS keygen binary, the Caddyfile and the caddy binary.
    tool_version:
        Written into the layering marker label.
    """
    redirect = LogRedirect(log_redirect)
    return _load(LAYERED_DOCKERFILE_TEMPLATE).substitute(
        base_image=base_image,
        original_cmd=json.dumps(list(original_cmd)),
        user_section=f"USER {original_user}\n" if original_user else "",
        log_redirect=redirect.value,
        tls_section=_TLS_SECTION if include_tls else "",
        tool_version=tool_version,
    )


def render_wrapper_script(*, kms_server_url: str, user_api_url: str) -> str:
    """Render ``compute-source-env.sh`` for one environment."""
    return _load(WRAPPER_SCRIPT_TEMPLATE).substitute(
        kms_server_url=kms_server_url,
        user_api_url=user_api_url,
    )
