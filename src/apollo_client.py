"""HTTP client for watching namespaces on the Apollo config service."""

import json
import logging
import threading
from collections.abc import Iterator
from urllib.parse import quote

import requests
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from src import constants
from src.host_identity import TargetingValue

logger = logging.getLogger(__name__)


class ApolloClientError(Exception):
    """Exception raised when the config service returns an error."""

    def __init__(
        self,
        message: str,
        namespace: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.namespace = namespace
        self.status_code = status_code


class NamespaceSnapshot(BaseModel):
    """Configurations of one namespace as returned by the config service."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    app_id: str = Field(alias="appId")
    cluster: str = constants.DEFAULT_CLUSTER
    namespace_name: str = Field(alias="namespaceName")
    configurations: dict[str, str] = Field(default_factory=dict)
    release_key: str | None = Field(default=None, alias="releaseKey")


class Notification(BaseModel):
    """Release notification of one namespace."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    namespace_name: str = Field(alias="namespaceName")
    notification_id: int = Field(alias="notificationId")


_notifications_adapter = TypeAdapter(list[Notification])

# Per requested namespace, in request order
WatchBatch = dict[str, NamespaceSnapshot | ApolloClientError]


def _normalize_namespace(namespace: str) -> str:
    # The service reports properties namespaces without suffix, ignoring case
    return namespace.removesuffix(constants.PROPERTIES_SUFFIX).lower()


class ApolloConfigClient:
    """HTTP client for the Apollo config service.

    This class encapsulates the long-poll protocol of the config service:
    fetching namespace configurations and waiting for release notifications.
    Polling cadence and retries after failures are handled here, callers only
    consume the batches yielded by `watch`.
    """

    def __init__(
        self,
        config_service_url: str,
        cluster: str = constants.DEFAULT_CLUSTER,
        connection_timeout: int = constants.APOLLO_CONNECTION_TIMEOUT,
        long_poll_timeout: int = constants.APOLLO_LONG_POLL_TIMEOUT,
        retry_interval: int = constants.APOLLO_RETRY_INTERVAL,
        shutdown_event: threading.Event | None = None,
    ):
        """Initialize the Apollo client.

        Args:
            config_service_url: Base URL of the config service
            cluster: Apollo cluster name
            connection_timeout: HTTP request timeout in seconds
            long_poll_timeout: Read timeout of notification requests in seconds
            retry_interval: Wait after a failed notification request in seconds
            shutdown_event: Event that stops every running watch when set
        """
        self.config_service_url = config_service_url.rstrip("/")
        self.cluster = cluster
        self.connection_timeout = connection_timeout
        self.long_poll_timeout = long_poll_timeout
        self.retry_interval = retry_interval
        self.shutdown_event = shutdown_event or threading.Event()

    def _get(self, url: str, params: dict[str, str], timeout: int) -> requests.Response:
        with requests.Session() as s:
            s.headers["User-Agent"] = constants.USER_AGENT
            logger.debug("Requesting %s with %s", url, params)
            return s.get(url, params=params, timeout=timeout)

    def fetch_namespace(
        self, app_id: str, namespace: str, ip: str | None = None
    ) -> NamespaceSnapshot:
        """Fetch the current configurations of a namespace.

        Args:
            app_id: Apollo app id.
            namespace: Namespace name.
            ip: Targeting value used by the service to pick gray releases.

        Returns:
            The namespace snapshot.

        Raises:
            ApolloClientError: If the request fails or the response is invalid.
        """
        url = (
            f"{self.config_service_url}/configs/{quote(app_id, safe='')}"
            f"/{quote(self.cluster, safe='')}/{quote(namespace, safe='')}"
        )
        params = {"ip": ip} if ip else {}
        try:
            response = self._get(url, params, self.connection_timeout)
        except requests.RequestException as e:
            raise ApolloClientError(
                f"Fetching namespace '{namespace}' of app '{app_id}' failed: {e}",
                namespace=namespace,
            ) from e

        if response.status_code != 200:
            raise ApolloClientError(
                f"Fetching namespace '{namespace}' of app '{app_id}' failed with"
                f" response code: {response.status_code} and text: {response.text}",
                namespace=namespace,
                status_code=response.status_code,
            )

        try:
            return NamespaceSnapshot.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ApolloClientError(
                f"Invalid configurations of namespace '{namespace}': {e}",
                namespace=namespace,
                status_code=response.status_code,
            ) from e

    def fetch_batch(
        self, app_id: str, namespaces: list[str], ip: str | None = None
    ) -> WatchBatch:
        """Fetch every namespace, keeping a failure as that namespace's result."""
        batch: WatchBatch = {}
        for namespace in namespaces:
            try:
                batch[namespace] = self.fetch_namespace(app_id, namespace, ip)
            except ApolloClientError as e:
                batch[namespace] = e
        return batch

    def poll_notifications(
        self, app_id: str, notifications: dict[str, int]
    ) -> list[Notification]:
        """Wait for release notifications of the given namespaces.

        The service holds the request until a namespace changes or its own
        timeout expires.

        Args:
            app_id: Apollo app id.
            notifications: Last seen notification id per namespace.

        Returns:
            Notifications of the changed namespaces, empty when nothing changed.

        Raises:
            ApolloClientError: If the request fails or the response is invalid.
        """
        params = {
            "appId": app_id,
            "cluster": self.cluster,
            "notifications": json.dumps(
                [
                    {"namespaceName": name, "notificationId": notification_id}
                    for name, notification_id in notifications.items()
                ]
            ),
        }
        try:
            response = self._get(
                f"{self.config_service_url}/notifications/v2",
                params,
                self.long_poll_timeout,
            )
        except requests.RequestException as e:
            raise ApolloClientError(
                f"Polling notifications of app '{app_id}' failed: {e}"
            ) from e

        if response.status_code == 304:
            return []
        if response.status_code != 200:
            raise ApolloClientError(
                f"Polling notifications of app '{app_id}' failed with"
                f" response code: {response.status_code} and text: {response.text}",
                status_code=response.status_code,
            )
        try:
            return _notifications_adapter.validate_json(response.content)
        except ValidationError as e:
            raise ApolloClientError(
                f"Invalid notifications of app '{app_id}': {e}",
                status_code=response.status_code,
            ) from e

    def watch(
        self,
        app_id: str,
        namespaces: list[str],
        targeting: TargetingValue | None = None,
    ) -> Iterator[WatchBatch | ApolloClientError]:
        """Watch namespaces of an app for as long as the client runs.

        Yields a batch with every namespace first, then a new one after each
        release notification. A failed notification request is yielded as an
        `ApolloClientError` and retried after `retry_interval` seconds. A
        namespace whose fetch failed keeps its previous notification id, so
        the next poll reports it again and the fetch is retried. The iterator
        ends once the shutdown event is set.

        Args:
            app_id: Apollo app id.
            namespaces: Namespace names to watch.
            targeting: Optional targeting value sent as `ip` parameter.
        """
        ip = targeting.ip_param() if targeting is not None else None
        notifications = {
            namespace: constants.INITIAL_NOTIFICATION_ID for namespace in namespaces
        }
        requested = {
            _normalize_namespace(namespace): namespace for namespace in namespaces
        }
        # notification ids to fall back to when the pending fetch fails
        previous_ids: dict[str, int] = {}
        need_fetch = True

        while not self.shutdown_event.is_set():
            if need_fetch:
                logger.debug("Fetching namespaces %s of app '%s'", namespaces, app_id)
                batch = self.fetch_batch(app_id, namespaces, ip)
                failed = [
                    namespace
                    for namespace, result in batch.items()
                    if isinstance(result, ApolloClientError)
                ]
                for namespace in failed:
                    if namespace in previous_ids:
                        notifications[namespace] = previous_ids[namespace]
                previous_ids.clear()
                need_fetch = False
                yield batch
                if failed:
                    self._wait_before_retry(app_id)
                continue

            try:
                changes = self.poll_notifications(app_id, notifications)
            except ApolloClientError as e:
                yield e
                self._wait_before_retry(app_id)
                continue
            except Exception as e:
                error = ApolloClientError(
                    f"Unexpected error polling notifications of app '{app_id}': {e}"
                )
                error.__cause__ = e
                yield error
                self._wait_before_retry(app_id)
                continue

            for change in changes:
                namespace = requested.get(_normalize_namespace(change.namespace_name))
                if namespace is not None:
                    previous_ids.setdefault(namespace, notifications[namespace])
                    notifications[namespace] = change.notification_id
                    need_fetch = True
            if need_fetch:
                logger.info("Namespaces of app '%s' changed", app_id)
            elif changes:
                logger.warning(
                    "Ignoring notifications of unknown namespaces of app '%s': %s",
                    app_id,
                    [change.namespace_name for change in changes],
                )
                self.shutdown_event.wait(self.retry_interval)

        logger.info("Stopped watching app '%s'", app_id)

    def _wait_before_retry(self, app_id: str) -> None:
        logger.info(
            "Retrying app '%s' in %d seconds...",
            app_id,
            self.retry_interval,
        )
        self.shutdown_event.wait(self.retry_interval)

    def shutdown(self) -> None:
        self.shutdown_event.set()
