from __future__ import annotations

import os

import uvicorn

from guildhall.env import load_dotenv_if_present


def main() -> None:
    """Serve the public API.

    Host and port come from the chain config (GUILDHALL_CHAIN_CONFIG_PATH);
    GUILDHALL_API_HOST / GUILDHALL_API_PORT override them for one-off runs.
    """
    load_dotenv_if_present()

    # Both read GUILDHALL_* at import/boot time, so they load after .env.
    from guildhall.api.app import create_app
    from guildhall.runtime.chain_config import load_chain_config

    cfg = load_chain_config()
    host = os.getenv("GUILDHALL_API_HOST") or cfg.api_host
    port = int(os.getenv("GUILDHALL_API_PORT") or cfg.api_port)

    uvicorn.run(create_app(), host=host, port=port, log_level=cfg.log_level.lower())


if __name__ == "__main__":
    main()
