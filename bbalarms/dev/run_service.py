from __future__ import annotations

import logging
import sys

from bbalarms.api.command_api import create_app, load_api_token
from bbalarms.bootstrap import build_service, configure_logging
from bbalarms.core.config.yaml_config import load_app_config

logger = logging.getLogger(__name__)


def main() -> None:
    """
    Start the alarms service and its HTTP command surface.

    Notes
    -----
    - Loads configuration from `config.yaml` by default.
    - Optional CLI usage:
        python -m bbalarms.dev.run_service --config path/to/config.yaml
    - The API bearer token is read from ``.env`` / the environment.
    """
    config_path = None
    if "--config" in sys.argv:
        i = sys.argv.index("--config")
        if i + 1 < len(sys.argv):
            config_path = sys.argv[i + 1]

    cfg = load_app_config(config_path)
    configure_logging(cfg.log_level)

    wiring = build_service(cfg)
    wiring.runtime.start()
    logger.info("%s started with %d alarms", cfg.service.name, len(wiring.manager.alarms))

    try:
        if cfg.api.enabled:
            token = load_api_token(cfg.api.token_env)
            if token is None:
                logger.warning("No API token in %s, command API is unauthenticated", cfg.api.token_env)
            app = create_app(wiring.commands, token)
            app.run(host=cfg.api.host, port=cfg.api.port, debug=False)
        else:
            wiring.runtime.stop_event.wait()
    except KeyboardInterrupt:
        pass
    finally:
        wiring.runtime.stop()


if __name__ == "__main__":
    main()
