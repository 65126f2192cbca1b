"""DiscoveryBackend implementation on top of `zeroconf`."""

import asyncio
import logging
import struct
from typing import Any, Coroutine, List, Optional, Set

from zeroconf import (
    BadTypeInNameException,
    DNSAddress,
    DNSOutgoing,
    DNSQuestion,
    Error as ZeroconfError,
    InterfaceChoice,
    IPVersion,
    RecordUpdateListener,
    ServiceListener,
    Zeroconf,
    service_type_name,
)
from zeroconf.asyncio import (
    AsyncServiceBrowser,
    AsyncServiceInfo,
    AsyncZeroconf,
)
from zeroconf import const as zeroconf_const

from spokenwire.config.discovery_config import DiscoveryConfig
from spokenwire.discovery.mdns import discovery_error
from spokenwire.discovery.mdns.discovery_backend import DiscoveryBackend
from spokenwire.discovery.mdns.discovery_error import DiscoveryError
from spokenwire.discovery.mdns.discovery_events import (
    FLAG_ADD,
    BrowseEvent,
    HostRecordEvent,
    ResolveEvent,
)
from spokenwire.discovery.mdns.subscription import (
    ResultCallback,
    Subscription,
)
from spokenwire.util.ip import filter_local_addresses

# zeroconf only exposes these DNS wire constants under private names, so they
# are aliased once here. The zeroconf version range is pinned in
# pyproject.toml.
CLASS_IN: int = zeroconf_const._CLASS_IN  # pylint: disable=protected-access
FLAGS_QR_QUERY: int = (
    zeroconf_const._FLAGS_QR_QUERY  # pylint: disable=protected-access
)
TYPE_A: int = zeroconf_const._TYPE_A  # pylint: disable=protected-access


def normalize_service_type(service_type: str) -> str:
    """Returns the fully-qualified zeroconf form of `service_type`.

    Accepts "_name._udp.local.", "_name._udp" or a bare "_name" (which is
    assumed to be a UDP service). The result is checked against zeroconf's
    own service type rules, so anything returned here is accepted by
    `AsyncServiceBrowser`.

    Raises:
        ValueError: If `service_type` is empty, missing its leading '_', or
            otherwise not a valid DNS-SD service type.
        TypeError: If `service_type` is not a str.
    """
    if not isinstance(service_type, str):
        raise TypeError(
            f"service_type must be str, got {type(service_type).__name__}."
        )
    if not service_type.startswith("_"):
        raise ValueError(
            f"service_type must start with '_', got '{service_type}'."
        )
    if service_type.endswith("._tcp.local.") or service_type.endswith(
        "._udp.local."
    ):
        full_type = service_type
    elif service_type.endswith("._tcp.local") or service_type.endswith(
        "._udp.local"
    ):
        full_type = f"{service_type}."
    elif service_type.endswith("._tcp") or service_type.endswith("._udp"):
        full_type = f"{service_type}.local."
    else:
        full_type = f"{service_type}._udp.local."

    try:
        service_type_name(full_type, strict=False)
    except BadTypeInNameException as e:
        raise ValueError(
            f"Invalid service type '{service_type}': {e}"
        ) from e
    return full_type


def _checked_service_type(service_type: str) -> str:
    try:
        return normalize_service_type(service_type)
    except (TypeError, ValueError) as e:
        raise DiscoveryError(discovery_error.BAD_PARAM, str(e)) from e


def _fully_qualified(host_name: str) -> str:
    return host_name if host_name.endswith(".") else f"{host_name}."


class _BrowseListener(ServiceListener):
    """Forwards zeroconf browse callbacks into a subscription."""

    def __init__(
        self, service_type: str, subscription: Subscription[BrowseEvent]
    ) -> None:
        self.__service_type = service_type
        self.__suffix = f".{service_type}"
        self.__subscription = subscription

    def __instance_name(self, name: str) -> str:
        if name.endswith(self.__suffix):
            return name[: -len(self.__suffix)]
        return name

    def __report(self, type_: str, name: str, flags: int) -> None:
        if type_ != self.__service_type:
            logging.debug(
                "Ignoring browse result '%s' of type '%s'. Expected '%s'.",
                name,
                type_,
                self.__service_type,
            )
            return
        self.__subscription.on_available(
            BrowseEvent(self.__instance_name(name), flags)
        )

    def add_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        self.__report(type_, name, FLAG_ADD)

    def update_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        self.__report(type_, name, FLAG_ADD)

    def remove_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        self.__report(type_, name, 0)


class _HostRecordListener(RecordUpdateListener):
    """Forwards live A records for one host into a subscription."""

    def __init__(
        self, host_name: str, subscription: Subscription[HostRecordEvent]
    ) -> None:
        super().__init__()
        self.__host_name = host_name
        self.__key = host_name.lower()
        self.__subscription = subscription

    def async_update_records(
        self, zc: Zeroconf, now: float, records: List[Any]
    ) -> None:
        for update in records:
            record = update.new
            if not isinstance(record, DNSAddress):
                continue
            if record.type != TYPE_A or record.key != self.__key:
                continue
            # Goodbye packets arrive as already-expired records.
            if record.is_expired(now):
                continue
            self.__subscription.on_available(
                HostRecordEvent(self.__host_name, bytes(record.address))
            )

    def async_update_records_complete(self) -> None:
        pass


class ZeroconfBackend(DiscoveryBackend):
    """Discovery over multicast DNS using `zeroconf`.

    The `AsyncZeroconf` instance is created lazily on the running event loop
    the first time a subscription is opened, unless a shared instance is
    supplied. A shared instance is never closed by this backend.
    """

    def __init__(
        self,
        config: Optional[DiscoveryConfig] = None,
        zc_instance: Optional[AsyncZeroconf] = None,
    ) -> None:
        self.__config = config if config is not None else DiscoveryConfig()
        self.__mdns: Optional[AsyncZeroconf] = zc_instance
        self.__is_shared_zc = zc_instance is not None
        self.__tasks: Set["asyncio.Task[None]"] = set()
        self.__cleanup_tasks: Set["asyncio.Task[None]"] = set()
        self.__is_closed = False

    def __ensure_zeroconf(self) -> AsyncZeroconf:
        if self.__is_closed:
            raise DiscoveryError(
                discovery_error.SERVICE_NOT_RUNNING,
                "ZeroconfBackend has been closed.",
            )
        if self.__mdns is not None:
            return self.__mdns

        interfaces: Any = InterfaceChoice.All
        if self.__config.interfaces:
            local = filter_local_addresses(self.__config.interfaces)
            if local:
                interfaces = local
            else:
                logging.warning(
                    "None of the configured interfaces %s exist; using all "
                    "interfaces.",
                    self.__config.interfaces,
                )

        try:
            self.__mdns = AsyncZeroconf(
                interfaces=interfaces, ip_version=IPVersion.V4Only
            )
        except Exception as e:
            raise DiscoveryError(
                discovery_error.SERVICE_NOT_RUNNING,
                f"Failed to start zeroconf: {e}",
            ) from e
        logging.info(
            "Created AsyncZeroconf for discovery on interfaces: %s", interfaces
        )
        return self.__mdns

    @staticmethod
    def __create_task(
        coro: Coroutine[Any, Any, None], tasks: Set["asyncio.Task[None]"]
    ) -> "asyncio.Task[None]":
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError as e:
            coro.close()
            raise DiscoveryError(
                discovery_error.SERVICE_NOT_RUNNING,
                "ZeroconfBackend requires a running event loop.",
            ) from e
        tasks.add(task)
        task.add_done_callback(tasks.discard)
        return task

    def __run_until_closed(
        self, subscription: Subscription[Any], coro: Coroutine[Any, Any, None]
    ) -> None:
        task = self.__create_task(coro, self.__tasks)
        subscription.add_close_callback(task.cancel)

    def __cleanup_later(self, coro: Coroutine[Any, Any, None]) -> None:
        self.__create_task(coro, self.__cleanup_tasks)

    def browse(
        self, service_type: str, callback: ResultCallback[BrowseEvent]
    ) -> Subscription[BrowseEvent]:
        full_type = _checked_service_type(service_type)
        mdns = self.__ensure_zeroconf()
        subscription: Subscription[BrowseEvent] = Subscription(
            f"browse {full_type}", callback
        )
        try:
            browser = AsyncServiceBrowser(
                mdns.zeroconf,
                [full_type],
                listener=_BrowseListener(full_type, subscription),
            )
        except ZeroconfError as e:
            subscription.close()
            raise DiscoveryError(
                discovery_error.UNKNOWN,
                f"Failed to browse for {full_type}: {e}",
            ) from e
        subscription.add_close_callback(
            lambda: self.__cleanup_later(browser.async_cancel())
        )
        logging.info("Browsing for services of type %s", full_type)
        return subscription

    def resolve_instance(
        self,
        instance_name: str,
        service_type: str,
        callback: ResultCallback[ResolveEvent],
    ) -> Subscription[ResolveEvent]:
        full_type = _checked_service_type(service_type)
        mdns = self.__ensure_zeroconf()
        subscription: Subscription[ResolveEvent] = Subscription(
            f"resolve {instance_name}.{full_type}", callback
        )
        self.__run_until_closed(
            subscription,
            self.__resolve_instance_loop(
                mdns, f"{instance_name}.{full_type}", full_type, subscription
            ),
        )
        logging.info("Resolving instance %s.%s", instance_name, full_type)
        return subscription

    async def __resolve_instance_loop(
        self,
        mdns: AsyncZeroconf,
        full_name: str,
        full_type: str,
        subscription: Subscription[ResolveEvent],
    ) -> None:
        timeout_ms = int(self.__config.resolve_timeout * 1000)
        while not subscription.is_closed:
            try:
                info = AsyncServiceInfo(full_type, full_name)
                found = await info.async_request(mdns.zeroconf, timeout_ms)
            except Exception as e:  # pylint: disable=broad-exception-caught
                subscription.on_available(
                    DiscoveryError(discovery_error.UNKNOWN, str(e))
                )
            else:
                if found and info.server and info.port is not None:
                    subscription.on_available(
                        ResolveEvent(info.server, struct.pack("!H", info.port))
                    )
                else:
                    subscription.on_available(
                        DiscoveryError(
                            discovery_error.TIMEOUT,
                            f"No SRV record for {full_name}.",
                        )
                    )
            await asyncio.sleep(self.__config.resolve_interval)

    def resolve_host(
        self, host_name: str, callback: ResultCallback[HostRecordEvent]
    ) -> Subscription[HostRecordEvent]:
        host_name = _fully_qualified(host_name)
        mdns = self.__ensure_zeroconf()
        subscription: Subscription[HostRecordEvent] = Subscription(
            f"query A {host_name}", callback
        )
        question = DNSQuestion(host_name, TYPE_A, CLASS_IN)
        listener = _HostRecordListener(host_name, subscription)
        mdns.zeroconf.async_add_listener(listener, question)
        subscription.add_close_callback(
            lambda: mdns.zeroconf.async_remove_listener(listener)
        )
        self.__run_until_closed(
            subscription, self.__query_host_loop(mdns, question, subscription)
        )
        logging.info("Watching A records for %s", host_name)
        return subscription

    async def __query_host_loop(
        self,
        mdns: AsyncZeroconf,
        question: DNSQuestion,
        subscription: Subscription[HostRecordEvent],
    ) -> None:
        while not subscription.is_closed:
            out = DNSOutgoing(FLAGS_QR_QUERY)
            out.add_question(question)
            try:
                mdns.zeroconf.async_send(out)
            except Exception as e:  # pylint: disable=broad-exception-caught
                subscription.on_available(
                    DiscoveryError(discovery_error.UNKNOWN, str(e))
                )
            await asyncio.sleep(self.__config.resolve_interval)

    async def close(self) -> None:
        # Cancels outstanding queries and closes an owned AsyncZeroconf.
        if self.__is_closed:
            return
        self.__is_closed = True

        for task in self.__tasks:
            task.cancel()
        pending = list(self.__tasks) + list(self.__cleanup_tasks)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        if self.__mdns is not None and not self.__is_shared_zc:
            logging.info("Closing owned AsyncZeroconf instance.")
            try:
                await self.__mdns.async_close()
            except Exception as e:  # pylint: disable=broad-exception-caught
                logging.error(
                    "Error during AsyncZeroconf.async_close(): %s",
                    e,
                    exc_info=True,
                )
        self.__mdns = None
