"""
MQTTControlPlane - command and status channel of the inference bridge

Bounded Context: MQTT connection management + command reception
Responsibilities:
  - Receive JSON commands ({"command": "...", ...}) on the command topic
  - Dispatch them through CommandRegistry
  - Publish status messages (command results, health, restart requests)

QoS Policy:
  - Commands: QoS 1 (at-least-once delivery)
  - Status: QoS 1 + retained (last status persisted)

Threading:
  - MQTT client runs own background thread (loop_start/loop_stop)
  - Command handlers run in MQTT thread (keep them fast!)
"""

import json
import logging
from datetime import datetime, timezone
from threading import Event
from typing import Any, Dict, Optional

import paho.mqtt.client as mqtt

from lookout_mqtt.schemas import HealthCode

from .registry import CommandRegistry, CommandNotAvailableError

logger = logging.getLogger(__name__)

RESTART_REQUESTED_STATUS = "device_restart_requested"


class MQTTControlPlane:
    """
    Receives commands and publishes status for one bridge instance.

    Example:
        control_plane = MQTTControlPlane(
            broker_host="localhost",
            broker_port=1883,
            command_topic="lookout/control/cam_01/commands",
            status_topic="lookout/control/cam_01/status",
            client_id="lookout_bridge_cam_01"
        )
        control_plane.command_registry.register("stop", on_stop, "Stop streams")

        if control_plane.connect(timeout=5.0):
            ...
        control_plane.disconnect()
    """

    def __init__(
        self,
        broker_host: str,
        broker_port: int,
        command_topic: str,
        status_topic: str,
        client_id: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
    ):
        self.broker_host = broker_host
        self.broker_port = broker_port
        self.command_topic = command_topic
        self.status_topic = status_topic
        self.client_id = client_id

        self.client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
        )
        self.client.on_connect = self._on_connect
        self.client.on_message = self._on_message
        self.client.on_disconnect = self._on_disconnect

        if username and password:
            self.client.username_pw_set(username, password)

        self._connected = Event()
        self._running = False

        self.command_registry = CommandRegistry()

    def connect(self, timeout: float = 5.0) -> bool:
        """
        Connect and wait up to `timeout` seconds for the broker to accept.

        Returns:
            True if connected successfully, False otherwise
        """
        try:
            logger.info(f"🔌 Connecting to MQTT broker: {self.broker_host}:{self.broker_port}")
            self.client.connect(self.broker_host, self.broker_port, keepalive=60)
            self.client.loop_start()
            self._running = True

            if self._connected.wait(timeout=timeout):
                logger.info("✅ MQTT Control Plane connected")
                return True

            logger.error(f"❌ Connection timeout after {timeout}s")
            return False

        except (OSError, ValueError) as e:
            logger.error(f"❌ Error connecting to MQTT: {e}")
            return False

    def disconnect(self) -> None:
        """Safe to call multiple times."""
        if not self._running:
            return

        logger.info("🔌 Disconnecting from MQTT broker")
        self.publish_status("disconnected")
        self.client.loop_stop()
        self.client.disconnect()
        self._running = False
        self._connected.clear()
        logger.info("✅ MQTT Control Plane disconnected")

    def is_connected(self) -> bool:
        return self._connected.is_set()

    def build_status(self, status: str, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        message = {
            "status": status,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "client_id": self.client_id,
        }
        if details:
            message["details"] = details
        return message

    def publish_status(self, status: str, details: Optional[Dict[str, Any]] = None) -> bool:
        """
        Publish a retained status message (QoS 1).

        Returns:
            True if the message was queued by the client
        """
        message = self.build_status(status, details)

        try:
            result = self.client.publish(
                self.status_topic,
                json.dumps(message, default=str),
                qos=1,
                retain=True,
            )
        except (OSError, ValueError) as e:
            logger.error(f"❌ Error publishing status: {e}")
            return False

        if result.rc != mqtt.MQTT_ERR_SUCCESS:
            logger.error(f"❌ Status '{status}' not published (rc={result.rc})")
            return False

        logger.debug(f"📤 Status published: {status}")
        return True

    def request_device_restart(self, health: HealthCode) -> None:
        """
        Ask the device manager to reboot this device.

        The request is a retained status message, so a manager that connects
        later still sees it.
        """
        logger.error(f"🔁 Requesting device restart (health={health.name})")
        self.publish_status(
            RESTART_REQUESTED_STATUS,
            {"health": health.name, "health_code": int(health)},
        )

    # ===== MQTT Callbacks (run in MQTT thread) =====

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        if reason_code.is_failure:
            logger.error(f"❌ Connection failed (rc={reason_code})")
            self._connected.clear()
            return

        logger.info(f"✅ Connected to broker (rc={reason_code})")

        client.subscribe(self.command_topic, qos=1)
        logger.info(f"📥 Subscribed to: {self.command_topic} (QoS 1)")

        self.publish_status("connected")
        self._connected.set()

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties):
        if reason_code.is_failure:
            logger.warning(f"⚠️ Unexpected disconnection (rc={reason_code})")
        else:
            logger.info("✅ Disconnected from broker")
        self._connected.clear()

    def _on_message(self, client, userdata, msg):
        self.handle_payload(msg.payload)

    def handle_payload(self, payload: bytes) -> None:
        """
        Decode one command message and dispatch it.

        Errors are logged and reported as an "error" status; nothing is raised
        into the MQTT thread.
        """
        try:
            command_data = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error(f"❌ Error decoding JSON: {payload!r} ({e})")
            return

        if not isinstance(command_data, dict):
            logger.warning(f"⚠️ Command must be a JSON object, got: {command_data!r}")
            return

        command = str(command_data.get("command", "")).lower()
        if not command:
            logger.warning("⚠️ Empty command received")
            return

        logger.info(f"🎯 Executing command: {command}")

        try:
            self.command_registry.execute(command, command_data)
            logger.debug(f"✅ Command '{command}' executed successfully")

        except CommandNotAvailableError as e:
            logger.warning(f"⚠️ {e}")
            available = ', '.join(sorted(self.command_registry.available_commands))
            logger.info(f"💡 Available commands: {available}")
            self.publish_status("error", {"command": command, "error": str(e)})

        except Exception as e:
            logger.error(f"❌ Error executing '{command}': {e}", exc_info=True)
            self.publish_status("error", {"command": command, "error": str(e)})
