"""
MQTT client for LUCID Asset Agent.

Bridges the hub and the device state store: the retained desired document is
written into the store's desired tree, and every reported-tree change is
published retained. Connection changes are forwarded so asset processing
only runs while the hub is reachable.
"""

from __future__ import annotations

import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import paho.mqtt.client as mqtt

from lucid_asset_agent.core.device_state import DeviceStateStore, StateStoreError
from lucid_asset_agent.mqtt_topics import TopicSchema

logger = logging.getLogger(__name__)


def _utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True, slots=True)
class StatusPayload:
    state: str
    connected_since_ts: str
    uptime_s: float

    def to_json(self) -> str:
        return json.dumps({
            "state": self.state,
            "connected_since_ts": self.connected_since_ts,
            "uptime_s": self.uptime_s,
        })


class AgentMQTTClient:
    """
    MQTT transport for the desired/reported state trees.

    on_connection_change(True) fires after a successful connect,
    on_connection_change(False) on disconnect.
    """

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        version: str,
        *,
        store: DeviceStateStore,
        on_connection_change: Optional[Callable[[bool], None]] = None,
        keepalive: int = 60,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.version = version
        self.keepalive = keepalive

        self.topics = TopicSchema(username)
        self.client_id = f"lucid.asset-agent.{username}"

        self._store = store
        self._on_connection_change = on_connection_change
        self._client: Optional[mqtt.Client] = None
        # One worker keeps desired documents applied in arrival order.
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="mqtt-msg")

        self._handlers: dict[str, Callable[[str], None]] = {
            self.topics.desired(): self._handle_desired,
        }
        self._connected_since_ts: Optional[str] = None
        self._connected_ts: Optional[float] = None

        store.add_listener(self._on_state_change)

    # -------------------------
    # State bridge
    # -------------------------
    def _handle_desired(self, payload_str: str) -> None:
        if not payload_str:
            logger.info("Desired state cleared by hub")
            tree: Any = {}
        else:
            try:
                tree = json.loads(payload_str)
            except json.JSONDecodeError as exc:
                logger.error("Invalid desired state JSON: %s", exc)
                return
        if not isinstance(tree, dict):
            logger.error("Desired state must be a JSON object, got %s", type(tree).__name__)
            return
        try:
            self._store.replace("desired", tree)
        except StateStoreError as exc:
            logger.error("Failed to apply desired state: %s", exc)

    def _on_state_change(self, scope: str, path: str) -> None:
        if scope == "reported":
            self.publish_reported()

    def publish_reported(self) -> None:
        if not self.is_connected():
            return
        tree = self._store.get_state("reported") or {}
        self.publish(self.topics.reported(), tree, qos=1, retain=True)

    # -------------------------
    # Paho callbacks
    # -------------------------
    def _publish_status(self, state: str) -> None:
        if not self._client:
            return
        connected = self._connected_since_ts or _utc_iso()
        uptime_s = 0.0
        if self._connected_ts is not None:
            uptime_s = max(0.0, time.time() - self._connected_ts)
        payload = StatusPayload(state=state, connected_since_ts=connected, uptime_s=uptime_s)
        self._client.publish(
            self.topics.status(),
            payload=payload.to_json(),
            qos=1,
            retain=True,
        )

    def _notify_connection(self, connected: bool) -> None:
        if self._on_connection_change is None:
            return
        try:
            self._on_connection_change(connected)
        except Exception:
            logger.exception("Connection change callback failed")

    def _on_connect(self, client: mqtt.Client, userdata: Any, flags: dict, rc: int) -> None:
        if rc != 0:
            logger.error("MQTT connect failed rc=%s", rc)
            return

        logger.info("Connected to MQTT broker as %s", self.username)
        # Only set connected_since_ts on first connect (maintain stability)
        if self._connected_since_ts is None:
            self._connected_ts = time.time()
            self._connected_since_ts = _utc_iso()

        for topic in list(self._handlers.keys()):
            client.subscribe(topic, qos=1)
            logger.info("Subscribed: %s", topic)

        self._publish_status("online")
        try:
            self.publish_reported()
        except Exception:
            logger.exception("Failed to publish reported state on connect")

        self._notify_connection(True)

    def _on_disconnect(self, client: mqtt.Client, userdata: Any, rc: int) -> None:
        if rc != 0:
            logger.warning("Unexpected disconnect rc=%s", rc)
        self._notify_connection(False)

    def _on_message(self, client: mqtt.Client, userdata: Any, msg: mqtt.MQTTMessage) -> None:
        handler = self._handlers.get(msg.topic)
        if not handler:
            logger.warning("Unhandled topic: %s", msg.topic)
            return
        try:
            payload_str = msg.payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            logger.error("Payload decode failed topic=%s err=%s", msg.topic, exc)
            return
        self._executor.submit(handler, payload_str)

    # -------------------------
    # Connection
    # -------------------------
    def connect(self) -> bool:
        try:
            client = mqtt.Client(client_id=self.client_id, protocol=mqtt.MQTTv311)
            client.username_pw_set(self.username, self.password)

            # Broker publishes this on disconnect/crash; same topic as status.
            lwt_payload = {
                "state": "offline",
                "agent_id": self.username,
                "version": self.version,
                "ts": _utc_iso(),
            }
            client.will_set(
                self.topics.status(),
                payload=json.dumps(lwt_payload),
                qos=1,
                retain=True,
            )

            client.on_connect = self._on_connect
            client.on_disconnect = self._on_disconnect
            client.on_message = self._on_message

            self._client = client
            client.connect(self.host, self.port, keepalive=self.keepalive)
            client.loop_start()
            return True
        except Exception:
            logger.exception("Failed to connect to MQTT broker")
            self._client = None
            return False

    def disconnect(self) -> None:
        if not self._client:
            return
        try:
            self._publish_status("offline")
            self._client.loop_stop()
            self._client.disconnect()
        finally:
            self._client = None
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._notify_connection(False)

    def is_connected(self) -> bool:
        return bool(self._client and self._client.is_connected())

    def publish(self, topic: str, payload: Any, *, qos: int = 0, retain: bool = False) -> Any:
        if not self._client:
            raise RuntimeError("MQTT client not connected")
        if isinstance(payload, (dict, list)):
            payload = json.dumps(payload)
        return self._client.publish(topic, payload=payload, qos=qos, retain=retain)
