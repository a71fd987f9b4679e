"""RobustMQ operator main application."""

import asyncio
import logging
import signal
from typing import Optional

from . import __version__
from .cluster import ClusterConfig, ClusterConnection
from .config import Settings, get_settings
from .controller import ReconcileLoop

logger = logging.getLogger(__name__)


class Application:
    """Main application orchestrator."""

    def __init__(self, settings: Settings):
        """
        Initialize application.

        Args:
            settings: Application settings
        """
        self.settings = settings
        self.cluster: Optional[ClusterConnection] = None
        self.loop: Optional[ReconcileLoop] = None
        self._shutdown = False

    async def start(self) -> None:
        """Start the application."""
        logger.info("Starting RobustMQ operator...")
        logger.info(f"   Version: {__version__}")
        logger.info(f"   Namespace: {self.settings.watch_namespace or '<all>'}")
        logger.info(f"   Prune orphans: {self.settings.prune_orphans}")

        self.cluster = ClusterConnection(
            ClusterConfig(
                kubeconfig_path=self.settings.kubeconfig_path,
                kubeconfig_data=self.settings.kubeconfig_data,
                context=self.settings.kube_context,
            )
        )
        version = await asyncio.to_thread(self.cluster.get_cluster_version)
        logger.info(f"✓ Connected to Kubernetes {version['git_version']}")

        self.loop = ReconcileLoop(self.cluster, self.settings)
        await self.loop.start()

        logger.info("✓ RobustMQ operator started successfully")

        # Run until shutdown signal
        try:
            while not self._shutdown:
                await asyncio.sleep(1)
        except asyncio.CancelledError:
            pass

    async def stop(self) -> None:
        """Stop the application."""
        logger.info("Shutting down RobustMQ operator...")
        self._shutdown = True

        if self.loop:
            await self.loop.stop()
        if self.cluster:
            self.cluster.close()

        logger.info("✓ RobustMQ operator stopped")

    def handle_signal(self, sig: int) -> None:
        """
        Handle shutdown signals.

        Args:
            sig: Signal number
        """
        logger.info(f"Received signal {sig}, initiating shutdown...")
        self._shutdown = True


async def main() -> None:
    """Main entry point."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    app = Application(settings)

    # Setup signal handlers
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, app.handle_signal, sig)

    try:
        await app.start()
    finally:
        await app.stop()


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
