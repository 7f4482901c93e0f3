"""
Ledger service entry point: ``python -m account_ledger [port]``
"""

import sys

from .api import run_server
from .config import load_config
from .logging_config import setup_logging


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    try:
        cfg = load_config(argv)
    except ValueError as e:
        print(f"invalid arguments: {e}", file=sys.stderr)
        return 2
    
    logger = setup_logging(cfg.log_level)
    logger.info(
        f"Starting ledger service on {cfg.api_host}:{cfg.api_port} "
        f"(pool size {cfg.db_max_open_conns})"
    )
    run_server(
        host=cfg.api_host,
        port=cfg.api_port,
        workers=cfg.api_workers,
        log_level=cfg.log_level
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
