import json
import ssl
import threading
from typing import Any, Callable, Dict, Optional
from uuid import uuid4

import certifi
from paho.mqtt import client as mqtt
from paho.mqtt.client import CallbackAPIVersion

from domain.models.caller_id import CallerIdEvent, LookupResult


def build_call_payload(event: CallerIdEvent, result: Optional[LookupResult]) -> Dict[str, Any]:
    """JSON body published for one incoming call."""
    payload: Dict[str, Any] = {
        "number": event.number,
        "receivedAt": event.received_at.isoformat(),
        "match": result is not None and result.has_identity,
    }
    if payload["match"]:
        payload.update(result.to_dict())
    return payload


class MqttClient:
    """
    Publishes resolved calls to `<prefix>/call` and the gateway status to
    `<prefix>/status` (retained, with a last will of 'offline').
    """

    def __init__(self, settings, log_callback: Callable[[str], None] = print) -> None:
        self.settings = settings
        self.log = log_callback
        self.client: Optional[mqtt.Client] = None
        self._loop_started = False
        self._connected_evt = threading.Event()

        self.callTopic = f"{settings.topic_prefix}/call"
        self.statusTopic = f"{settings.topic_prefix}/status"

    @property
    def is_connected(self) -> bool:
        return self._connected_evt.is_set()

    # ---------- Connection ----------
    def connect(self) -> None:
        """Configure TLS/LWT and start the paho loop with auto-reconnect."""
        if not self.settings.host:
            self.log("ℹ️ MQTT_HOST not configured; call notifications disabled.")
            return

        client_id = self.settings.client_id or f"callerid_{uuid4().hex[:8]}"
        self.client = mqtt.Client(CallbackAPIVersion.VERSION2, client_id=client_id, protocol=mqtt.MQTTv5)

        if self.settings.user and self.settings.password:
            self.client.username_pw_set(self.settings.user, self.settings.password)
            self.log("🔐 MQTT credentials set")

        self.client.will_set(self.statusTopic, json.dumps({"status": "offline"}), qos=1, retain=True)

        if self.settings.port == 8883:
            self.client.tls_set(ca_certs=certifi.where(), tls_version=ssl.PROTOCOL_TLS_CLIENT)
            self.client.tls_insecure_set(False)
            self.log("🔒 MQTT TLS configured")

        self.client.on_connect = self.on_connect
        self.client.on_disconnect = self.on_disconnect
        self.client.reconnect_delay_set(min_delay=1, max_delay=30)

        self.log(f"🔧 MQTT -> host={self.settings.host}, port={self.settings.port}")
        self.client.connect_async(self.settings.host, self.settings.port, keepalive=30)
        if not self._loop_started:
            self.client.loop_start()
            self._loop_started = True

    def disconnect(self) -> None:
        if not self.client:
            return
        if self.is_connected:
            self._publish(self.statusTopic, json.dumps({"status": "offline"}), retain=True)
        try:
            self.client.disconnect()
        except Exception as e:
            self.log(f"⚠️ MQTT disconnect failed: {e}")
        if self._loop_started:
            self.client.loop_stop()
            self._loop_started = False
        self._connected_evt.clear()
        self.log("👋 MQTT disconnected")

    # ---------- Paho callbacks ----------
    def on_connect(self, client: mqtt.Client, userdata, flags, reason_code, properties=None) -> None:
        if getattr(reason_code, "is_failure", False):
            self.log(f"⚠️ MQTT connection refused (rc={reason_code})")
            return
        self.log(f"✅ MQTT connected (rc={reason_code})")
        self._connected_evt.set()
        self._publish(self.statusTopic, json.dumps({"status": "online"}), retain=True)

    def on_disconnect(self, client: mqtt.Client, userdata, flags, reason_code, properties=None) -> None:
        self.log(f"⚠️ MQTT disconnected (rc={reason_code})")
        self._connected_evt.clear()

    # ---------- Publish ----------
    def _publish(self, topic: str, payload: str, qos: int = 1, retain: bool = False) -> bool:
        if not self.client:
            self.log("⚠️ MQTT client not ready to publish.")
            return False
        try:
            info = self.client.publish(topic, payload, qos=qos, retain=retain)
            if info.rc != mqtt.MQTT_ERR_SUCCESS:
                self.log(f"⚠️ publish() failed rc={info.rc} topic={topic}")
                return False
            return True
        except Exception as e:
            self.log(f"❌ Error publishing to {topic}: {e}")
            return False

    def publish_call(self, event: CallerIdEvent, result: Optional[LookupResult]) -> bool:
        """Result sink for the listener: one message per incoming call."""
        payload = build_call_payload(event, result)
        if self._publish(self.callTopic, json.dumps(payload, default=str), qos=1):
            self.log(f"📤 Call {event.number} → {self.callTopic}")
            return True
        return False
