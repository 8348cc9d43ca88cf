"""Run the tracker API under uvicorn, configured from the environment."""

import os
from typing import Dict, Optional

import uvicorn

_TRUTHY = {"1", "true", "yes", "on"}


def _ssl_options() -> Dict[str, Optional[str]]:
    env_to_option = {
        "SSL_CERTFILE": "ssl_certfile",
        "SSL_KEYFILE": "ssl_keyfile",
        "SSL_CA_CERTS": "ssl_ca_certs",
        "SSL_KEYFILE_PASSWORD": "ssl_keyfile_password",
    }
    return {option: os.getenv(name) for name, option in env_to_option.items() if os.getenv(name)}


def main() -> None:
    reload_enabled = os.getenv("RELOAD", "false").lower() in _TRUTHY
    # uvicorn ignores workers when reloading.
    workers = 1 if reload_enabled else int(os.getenv("WEB_CONCURRENCY", "1"))

    uvicorn.run(
        "awaredb.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=reload_enabled,
        workers=workers,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
        proxy_headers=True,
        forwarded_allow_ips=os.getenv("FORWARDED_ALLOW_IPS", "*"),
        **_ssl_options(),
    )


if __name__ == "__main__":
    main()
