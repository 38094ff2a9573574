from typing import Callable, Optional

from application.services.listener_service import ListenerHandle, ListenerService
from domain.errors import ReverseLookupError
from domain.models.caller_id import CallerIdEvent, LookupResult
from domain.services.caller_id_parser import CallerIdParser
from infrastructure.config.loader import Settings, load_settings
from infrastructure.http.lookup_client import create_lookup_client
from infrastructure.logging.log_sink import make_log
from infrastructure.mqtt.mqtt_client import MqttClient
from infrastructure.serial.modem_session import ModemSession


class AppController:
    """Wires settings, parser, lookup client, modem session and result sinks."""

    def __init__(self, settings: Optional[Settings] = None, log: Optional[Callable[[str], None]] = None):
        self.log = log or make_log("callerid")
        self.settings = settings or load_settings()

        self.parser = CallerIdParser(self.settings.lookup.country_code)
        self.lookup = create_lookup_client(self.settings.lookup, self.log)
        self.mqtt: Optional[MqttClient] = None
        self.listener: Optional[ListenerService] = None
        self.handle: Optional[ListenerHandle] = None

    # ----------------------
    # Lookup-only mode
    # ----------------------
    def lookup_number(self, raw_number: str) -> Optional[LookupResult]:
        number = self.parser.normalize(raw_number)
        if not number:
            self.log(f"⚠️ '{raw_number}' does not contain a phone number.")
            return None
        self.log(f"🔎 Lookup-only mode. Verifying number: {number}")
        try:
            result = self.lookup.lookup(number)
        except ReverseLookupError as e:
            self.log(f"⚠️ Lookup for {number} failed: {e}")
            return None
        if result is None:
            self.log(f"⚠️ No match found for {number}")
        return result

    # ----------------------
    # Listener mode
    # ----------------------
    def start_listener(self) -> ListenerHandle:
        if self.settings.mqtt.enabled:
            self.mqtt = MqttClient(self.settings.mqtt, self.log)
            self.mqtt.connect()

        session = ModemSession(self.settings.modem, self.log)
        self.listener = ListenerService(
            session,
            self.parser,
            self.lookup,
            log=self.log,
            on_result=self.on_call,
            lookup_timeout=self.settings.listener.lookup_timeout,
            reconnect=self.settings.listener.reconnect,
        )
        self.handle = self.listener.start()
        return self.handle

    def on_call(self, event: CallerIdEvent, result: Optional[LookupResult]) -> None:
        if result is None:
            self.log(f"⚠️ No result for {event.number}")
        else:
            self.log(f"✅ Match → {result.summary()}")
        if self.mqtt is not None:
            self.mqtt.publish_call(event, result)

    def shutdown(self) -> None:
        if self.handle is not None:
            if not self.handle.stop(timeout=5.0):
                self.log("⚠️ Listener did not stop within 5s")
        if self.mqtt is not None:
            self.mqtt.disconnect()
        self.lookup.close()
        self.log("👋 Shutdown complete.")
