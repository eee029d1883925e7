"""Entry point: python -m pg_operator"""

import signal
import sys

from pg_operator.config import OperatorConfig
from pg_operator.errors import ConfigError
from pg_operator.kube import KubernetesClient
from pg_operator.log import configure_logging, get_logger
from pg_operator.manager import ControllerManager
from pg_operator.models import CONNECTION_KIND, DATABASE_KIND
from pg_operator.reconcilers import ConnectionReconciler, DatabaseReconciler

logger = get_logger()


def build_manager(cfg: OperatorConfig) -> ControllerManager:
    kube = KubernetesClient(cfg)
    reconcilers = {
        CONNECTION_KIND: ConnectionReconciler(kube, cfg),
        DATABASE_KIND: DatabaseReconciler(kube, cfg),
    }
    return ControllerManager(kube, reconcilers, cfg)


def main():
    """Main entry point"""
    try:
        cfg = OperatorConfig.from_env()
    except ConfigError as e:
        configure_logging()
        logger.critical(f"Invalid configuration: {e}")
        return 2

    configure_logging(cfg.log_level)
    manager = None
    try:
        manager = build_manager(cfg)
        signal.signal(signal.SIGTERM, lambda signum, frame: manager.stop())
        manager.run()
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down gracefully...")
    except Exception as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        return 1
    finally:
        if manager:
            manager.stop()
    logger.info("Shutting down controller...")
    return 0


if __name__ == "__main__":
    sys.exit(main())
