"""Streams speech transcripts to a discovered receiver."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

from spokenwire.config.discovery_config import DiscoveryConfig
from spokenwire.discovery.address_record import AddressRecord
from spokenwire.discovery.service_discovery import ServiceDiscovery
from spokenwire.transport.payload import PING, encode_utterance
from spokenwire.transport.udp_transport import Transport

DEFAULT_INSTANCE_NAME = "speech-receiver"
DEFAULT_SERVICE_TYPE = "_x-plane9._udp"


class TranscriptLink(Transport.Client):
    """Connects a speech recognizer to a receiver found via discovery.

    Upstream, the recognizer reports `(utterance_id, text, is_final)` through
    `on_transcript()`. Downstream, a `TranscriptLink.Client` is told whenever
    the link becomes connected or disconnected. A keep-alive `ping` is sent
    on a fixed timer so the destination, and with it the connected state,
    is re-evaluated even while nobody is speaking.
    """

    # pylint: disable=R0903 # Abstract listener interface
    class Client(ABC):
        """Interface for `TranscriptLink` clients."""

        @abstractmethod
        def _on_connection_changed(self, connected: bool) -> None:
            """Called only when the connected state flips."""
            raise NotImplementedError(
                "TranscriptLink.Client._on_connection_changed must be implemented by subclasses."
            )

    def __init__(
        self,
        discovery: Optional[ServiceDiscovery] = None,
        client: Optional["TranscriptLink.Client"] = None,
        config: Optional[DiscoveryConfig] = None,
    ) -> None:
        """Initializes the TranscriptLink.

        Args:
            discovery: Session to send through. A zeroconf-backed session
                using `config` is created when omitted.
            client: Receives connected / disconnected notifications.
            config: Configuration for the session created when `discovery`
                is omitted. A supplied session brings its own config.

        Raises:
            ValueError: If both `discovery` and `config` are given.
        """
        if discovery is not None and config is not None:
            raise ValueError(
                "Pass either discovery or config to TranscriptLink, not both."
            )
        if discovery is None:
            discovery = ServiceDiscovery(config=config)
        self.__discovery = discovery
        self.__config = discovery.config
        self.__client = client
        self.__transport = Transport(self)
        self.__connected = False

        self.__utterance_id: Optional[int] = None
        self.__last_text = ""

        self.__keepalive_task: Optional["asyncio.Task[None]"] = None

    @property
    def discovery(self) -> ServiceDiscovery:
        return self.__discovery

    @property
    def transport(self) -> Transport:
        return self.__transport

    @property
    def connected(self) -> bool:
        return self.__connected

    async def start(
        self,
        instance_name: str = DEFAULT_INSTANCE_NAME,
        service_type: str = DEFAULT_SERVICE_TYPE,
    ) -> None:
        """Starts discovery and the keep-alive timer.

        Raises:
            RuntimeError: If already started.
        """
        if self.__keepalive_task is not None:
            raise RuntimeError("TranscriptLink has already been started.")
        await self.__discovery.start(instance_name, service_type)
        self.__keepalive_task = asyncio.get_running_loop().create_task(
            self.__keepalive_loop()
        )

    async def __keepalive_loop(self) -> None:
        while True:
            self.send_keepalive()
            await asyncio.sleep(self.__config.keepalive_interval)

    def send_keepalive(self) -> bool:
        """Sends one `ping`. Dropped silently when there is no destination."""
        return self.__transport.send(self.__discovery, PING)

    def on_transcript(
        self, utterance_id: int, text: str, is_final: bool = False
    ) -> bool:
        """Handles one recognizer update.

        A datagram is sent when |text| differs from the last text seen for
        the current utterance. A new |utterance_id| starts from scratch, and
        a final result forgets the last text so that a repeated phrase in
        the next segment is sent again.

        Returns:
            True if a datagram was sent.
        """
        if utterance_id != self.__utterance_id:
            self.__utterance_id = utterance_id
            self.__last_text = ""

        sent = False
        if text != self.__last_text:
            sent = self.__transport.send(
                self.__discovery, encode_utterance(utterance_id, text)
            )

        self.__last_text = "" if is_final else text
        return sent

    def _on_destination_changed(
        self, destination: Optional[AddressRecord]
    ) -> None:
        self.__set_connected(destination is not None)

    def __set_connected(self, connected: bool) -> None:
        if connected == self.__connected:
            return
        self.__connected = connected
        logging.info(
            "TranscriptLink %s.", "connected" if connected else "disconnected"
        )
        if self.__client is None:
            return
        try:
            # pylint: disable=W0212 # Calling client's notification method
            self.__client._on_connection_changed(connected)
        except Exception as e:  # pylint: disable=broad-exception-caught
            logging.error(
                "TranscriptLink client raised on connection change: %s",
                e,
                exc_info=True,
            )

    async def stop(self) -> None:
        # Stops the keep-alive timer and tears the discovery session down.
        task = self.__keepalive_task
        self.__keepalive_task = None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.__discovery.stop()
        self.__set_connected(False)
