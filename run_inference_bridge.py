#!/usr/bin/env python3
"""
Inference Bridge - Entry Point
==============================

Starts the Lookout inference bridge, which:
- Runs the gst-launch detection pipeline and the ffmpeg video capture
- Restarts either subprocess after a crash
- Pairs each qualifying detection batch with the next video frame
- Publishes packets to the "inference" topic and telemetry to MQTT
- Responds to control commands via MQTT control plane

Usage:
    python run_inference_bridge.py --config config/lookout_processor/processor_config.yaml

Lifecycle:
    1. Load configuration from YAML
    2. Setup logging (console + file)
    3. Create control plane, publishers and coordinator
    4. Register command handlers
    5. Start service (non-blocking)
    6. Wait for stop signal (Ctrl+C or SIGTERM)
    7. Graceful shutdown

Logs:
    - Console: INFO level
    - File: logs/inference_bridge.log (INFO level)
"""

import argparse
import signal
import sys
import logging
from pathlib import Path
from typing import Optional

from lookout_processor import InferenceCoordinator, ProcessorConfig
from lookout_processor.service import InferenceBridgeService
from lookout_control import MQTTControlPlane
from lookout_mqtt import InferencePublisher, TelemetryPublisher, create_logger


# ─────────────────────────────────────────────────────────────────────────────
# Logging Setup
# ─────────────────────────────────────────────────────────────────────────────

def setup_logging(log_file: Optional[Path] = None) -> logging.Logger:
    """Console logging plus an optional log file."""
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            *(
                [logging.FileHandler(log_file)]
                if log_file
                else []
            )
        ]
    )

    return logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Main Service
# ─────────────────────────────────────────────────────────────────────────────

class BridgeApp:
    """
    Application wrapper: builds the components, installs signal handlers
    and shuts everything down in order.
    """

    def __init__(self, config_path: Path, log_file: Optional[Path] = None):
        self.config_path = config_path
        self.logger = setup_logging(log_file)

        self.config: Optional[ProcessorConfig] = None
        self.control_plane: Optional[MQTTControlPlane] = None
        self.service: Optional[InferenceBridgeService] = None

        self._shutdown_requested = False

    def setup(self):
        self.logger.info("=" * 80)
        self.logger.info("🚀 Lookout Inference Bridge - Starting")
        self.logger.info("=" * 80)

        self.logger.info(f"📄 Loading configuration: {self.config_path}")
        self.config = ProcessorConfig.from_yaml(self.config_path)
        self.logger.info(f"✅ Configuration loaded (service_id={self.config.service_id})")

        mqtt = self.config.mqtt_config
        service_id = self.config.service_id
        mqtt_logger = create_logger(component="mqtt_publisher")

        self.logger.info("🔌 Creating MQTT control plane")
        self.control_plane = MQTTControlPlane(
            broker_host=mqtt.broker,
            broker_port=mqtt.port,
            command_topic=self.config.topic(mqtt.command_topic),
            status_topic=self.config.topic(mqtt.status_topic),
            client_id=f"bridge_{service_id}",
            username=mqtt.username,
            password=mqtt.password,
        )

        self.logger.info("📤 Creating MQTT publishers")
        inference_topic = self.config.topic(mqtt.inference_topic)
        inference_publisher = InferencePublisher(
            broker_host=mqtt.broker,
            broker_port=mqtt.port,
            topic=inference_topic,
            logger=mqtt_logger,
            client_id=f"publisher_inference_{service_id}",
            username=mqtt.username,
            password=mqtt.password,
            qos=mqtt.qos,
        )

        telemetry_topic = self.config.topic(mqtt.telemetry_topic)
        telemetry_publisher = TelemetryPublisher(
            broker_host=mqtt.broker,
            broker_port=mqtt.port,
            topic=telemetry_topic,
            logger=mqtt_logger,
            source=service_id,
            client_id=f"publisher_telemetry_{service_id}",
            username=mqtt.username,
            password=mqtt.password,
            qos=mqtt.qos,
        )
        self.logger.info(f"  - Inference topic: {inference_topic}")
        self.logger.info(f"  - Telemetry topic: {telemetry_topic}")

        self.logger.info("🏗️  Creating inference bridge service")
        coordinator = InferenceCoordinator.from_config(
            self.config,
            publisher=inference_publisher,
            telemetry=telemetry_publisher,
        )
        self.service = InferenceBridgeService(
            config=self.config,
            control_plane=self.control_plane,
            coordinator=coordinator,
            inference_publisher=inference_publisher,
            telemetry_publisher=telemetry_publisher,
        )
        self.service.setup()
        self.logger.info("✅ Service created")
        self.logger.info("=" * 80)

    def run(self):
        """Blocks until shutdown is requested."""
        if not self.service:
            raise RuntimeError("Service not initialized. Call setup() first.")

        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)

        try:
            self.service.start()

            self.logger.info("✅ Service started successfully")
            self.logger.info("Press Ctrl+C to stop")
            self.logger.info("=" * 80)

            self.service.wait()

        except KeyboardInterrupt:
            self.logger.info("⚠️  KeyboardInterrupt received")
            self.shutdown()

        except Exception as e:
            self.logger.error(f"❌ Service error: {e}", exc_info=True)
            self.shutdown()
            sys.exit(1)

    def shutdown(self):
        if self._shutdown_requested:
            self.logger.warning("⚠️  Shutdown already in progress")
            return

        self._shutdown_requested = True

        self.logger.info("=" * 80)
        self.logger.info("🛑 Shutting down inference bridge")
        self.logger.info("=" * 80)

        if self.service:
            try:
                self.service.stop()
            except Exception as e:
                self.logger.error(f"❌ Error stopping service: {e}", exc_info=True)

        self.logger.info("✅ Shutdown complete")

    def _signal_handler(self, signum, frame):
        signal_name = signal.Signals(signum).name
        self.logger.info(f"⚠️  Received signal {signal_name} ({signum})")
        self.shutdown()
        sys.exit(0)


# ─────────────────────────────────────────────────────────────────────────────
# CLI
# ─────────────────────────────────────────────────────────────────────────────

def parse_args():
    parser = argparse.ArgumentParser(
        description="Lookout Inference Bridge - gst detections + ffmpeg frames → MQTT",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start with default config
  python run_inference_bridge.py --config config/lookout_processor/processor_config.yaml

  # Console logging only
  python run_inference_bridge.py --config config/lookout_processor/processor_config.yaml --no-log-file

Debug health timer:
  LOCAL_DEBUG=1 or FORCE_HEALTHCHECK=1 samples health every health.check_interval seconds
        """
    )

    parser.add_argument(
        '--config',
        type=Path,
        required=True,
        help='Path to bridge configuration YAML file'
    )

    parser.add_argument(
        '--log-file',
        type=Path,
        default=Path('logs/inference_bridge.log'),
        help='Path to log file (default: logs/inference_bridge.log)'
    )

    parser.add_argument(
        '--no-log-file',
        action='store_true',
        help='Disable file logging (console only)'
    )

    return parser.parse_args()


def main():
    args = parse_args()

    log_file = None if args.no_log_file else args.log_file

    if not args.config.exists():
        print(f"❌ Error: Configuration file not found: {args.config}", file=sys.stderr)
        sys.exit(1)

    app = BridgeApp(config_path=args.config, log_file=log_file)

    try:
        app.setup()
        app.run()
    except Exception as e:
        print(f"❌ Fatal error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
