"""Watch Apollo namespaces and keep them materialized on disk.

One watch loop runs per configured app, each in its own worker thread. Every
batch received from the config service is written to
`<dir>/<app_id>/<namespace file>`. Errors of one namespace are logged and
never stop the loop, other namespaces or other apps.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor

from src.apollo_client import (
    ApolloClientError,
    ApolloConfigClient,
    NamespaceSnapshot,
    WatchBatch,
)
from src.file_handler import FileSinkError, ensure_directory, write_file
from src.host_identity import TargetingValue
from src.materializer import materialize
from src.settings import AppSettings, SyncDaemonSettings

logger = logging.getLogger(__name__)


class ConfigSyncService:
    """Service for syncing Apollo namespaces into local files.

    This service runs one watch loop per configured app and materializes every
    received namespace snapshot to the output directory.
    """

    shutdown_event: threading.Event

    def __init__(
        self,
        config: SyncDaemonSettings,
        targeting: TargetingValue | None = None,
        client: ApolloConfigClient | None = None,
    ) -> None:
        """Initialize the config sync service.

        Args:
            config: Configuration settings containing all service parameters
            targeting: Resolved host identity sent with every request
            client: Apollo client to watch with, built from config when omitted
        """
        self.config = config
        self.targeting = targeting

        # Store frequently accessed config values as instance attributes for convenience
        self.base_dir = config.dir
        self.apps = config.apps

        self.shutdown_event = threading.Event()
        self.client = client or ApolloConfigClient(
            config_service_url=str(config.config_service_url),
            cluster=config.cluster,
            connection_timeout=config.connection_timeout,
            retry_interval=config.retry_interval,
            shutdown_event=self.shutdown_event,
        )

    @property
    def worker_count(self) -> int:
        """Number of worker threads, at least one per app."""
        worker_threads = self.config.worker_threads
        if worker_threads is None:
            return max(len(self.apps), 1)
        if worker_threads < len(self.apps):
            logger.warning(
                "worker_threads (%d) is lower than the number of apps (%d), "
                "using one worker per app",
                worker_threads,
                len(self.apps),
            )
            return len(self.apps)
        return worker_threads

    def _write_namespace(self, app_id: str, snapshot: NamespaceSnapshot) -> None:
        filename, content = materialize(
            snapshot.namespace_name, snapshot.configurations
        )
        file_path = write_file(self.base_dir, app_id, filename, content)
        logger.info(
            "Synced namespace '%s' of app '%s' to '%s'",
            snapshot.namespace_name,
            app_id,
            file_path,
        )

    def process_batch(
        self, app: AppSettings, batch: WatchBatch | ApolloClientError
    ) -> None:
        """Process one batch received from the config service.

        Namespaces are written in request order. A failing namespace is logged
        and skipped, the remaining namespaces of the batch are still written.

        Args:
            app: App the batch belongs to
            batch: Result per namespace, or the error of the whole batch

        Raises:
            ApolloClientError: If the whole batch failed upstream
        """
        if isinstance(batch, ApolloClientError):
            raise batch

        for namespace, result in batch.items():
            try:
                if isinstance(result, ApolloClientError):
                    raise result
                self._write_namespace(app.app_id, result)
            except (ApolloClientError, FileSinkError, OSError) as e:
                logger.error(
                    "Failed to sync namespace '%s' of app '%s': %s",
                    namespace,
                    app.app_id,
                    e,
                    exc_info=True,
                )

    def run_app(self, app: AppSettings) -> None:
        """Watch one app until its subscription ends.

        Each batch is handled inside its own error boundary, so a failure only
        affects the batch it happened in.

        Args:
            app: App to watch
        """
        logger.info(
            "Watching app '%s' namespaces: %s", app.app_id, ", ".join(app.namespaces)
        )
        for batch in self.client.watch(app.app_id, app.namespaces, self.targeting):
            try:
                self.process_batch(app, batch)
            except ApolloClientError as e:
                logger.error("Error processing batch of app '%s': %s", app.app_id, e)
            except Exception as e:
                logger.error(
                    "Error processing batch of app '%s': %s",
                    app.app_id,
                    e,
                    exc_info=True,
                )
        logger.info("Watch of app '%s' ended", app.app_id)

    def run(self) -> None:
        """Run the config sync service.

        Creates the output directory, then runs one watch loop per app and
        waits for all of them to finish. Returns right away when no app is
        configured.

        Raises:
            FileSinkError: If the output directory cannot be created
            KeyboardInterrupt: Re-raised once every watch loop has stopped
        """
        logger.info("Starting config sync service")
        logger.info("Output directory: %s", self.base_dir)
        logger.info("Config service: %s", self.config.config_service_url)
        if self.targeting is not None:
            logger.info("Host identity: %s", self.targeting)

        ensure_directory(self.base_dir)

        if not self.apps:
            logger.info("No apps configured, nothing to watch")
            return

        with ThreadPoolExecutor(
            max_workers=self.worker_count, thread_name_prefix="watch"
        ) as executor:
            futures = [executor.submit(self.run_app, app) for app in self.apps]
            try:
                for future in futures:
                    # run_app handles batch errors itself
                    future.result()
            except KeyboardInterrupt:
                logger.info("Interrupted, stopping all watches")
                self.shutdown()
                raise

        logger.info("All watches ended, config sync service stopped")

    def shutdown(self) -> None:
        self.shutdown_event.set()
        self.client.shutdown()
