"""
Lookout CLI - Main entry point.

Sends control commands to the inference bridge over MQTT and can watch the
"inference" topic.
"""

import argparse
import sys
import time
from pathlib import Path
from typing import Any, Dict

import yaml

from lookout_mqtt import InferenceSubscriber, PublishPacket, create_logger

from .mqtt_client import MQTTCommandClient

COMMAND_TOPIC_TEMPLATE = "lookout/control/{service_id}/commands"


def load_yaml_config(config_path: str) -> Dict[str, Any]:
    """
    Load a command from a YAML file.

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If YAML is invalid or not a mapping
    """
    path = Path(config_path)

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    try:
        with open(path) as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {config_path}: {e}")

    if not isinstance(config, dict):
        raise ValueError(f"{config_path} must contain a mapping")
    return config


def parse_setting_value(raw: str) -> Any:
    """YAML scalar parsing: "80" → 80, "person" → "person"."""
    try:
        return yaml.safe_load(raw)
    except yaml.YAMLError:
        return raw


def build_command(args: argparse.Namespace) -> Dict[str, Any]:
    """Translate parsed CLI arguments into a control command payload."""
    if args.command == 'start':
        if args.config:
            command = load_yaml_config(args.config)
            command.setdefault('command', 'start')
            return command
        if not args.data_url:
            raise ValueError("start needs a data URL or --config")
        return {
            'command': 'start',
            'data_url': args.data_url,
            'video_url': args.video_url or "",
        }

    if args.command == 'set-setting':
        return {
            'command': 'set_setting',
            'name': args.name,
            'value': parse_setting_value(args.value),
        }

    return {'command': args.command}


def send_command(
    command: Dict[str, Any],
    service_id: str = "cam_01",
    broker: str = "localhost",
    port: int = 1883
) -> None:
    topic = COMMAND_TOPIC_TEMPLATE.format(service_id=service_id)

    client = MQTTCommandClient(broker=broker, port=port)
    client.send_command(topic, command, qos=1)


def format_packet(packet: PublishPacket) -> str:
    """One-line summary of an inference packet."""
    detections = ", ".join(
        f"#{det.sequence_number} {det.detection.display_name} ({det.detection.confidence:g})"
        for det in packet.detections
    )
    frame = f"{len(packet.frame)} B frame" if packet.has_frame else "no frame"
    return f"[{packet.timestamp.value}] {detections or '-'} | {frame}"


def watch(topic: str, broker: str, port: int) -> None:
    """Print inference packets until Ctrl+C."""
    subscriber = InferenceSubscriber(
        broker_host=broker,
        broker_port=port,
        inference_topic=topic,
        on_packet=lambda packet: print(format_packet(packet), flush=True),
        logger=create_logger("lookout_cli"),
        client_id="lookout_cli_watch",
    )

    if not subscriber.connect():
        raise ConnectionError(f"Unable to connect to MQTT broker at {broker}:{port}")

    subscriber.start()
    print(f"👀 Watching '{topic}' (Ctrl+C to stop)")
    try:
        while True:
            time.sleep(1.0)
    except KeyboardInterrupt:
        pass
    finally:
        subscriber.stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Lookout CLI - Send MQTT commands to the inference bridge",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start both streams
  lookout-cli start rtsp://192.168.1.20:8900/live --video-url rtsp://192.168.1.20:8900/live

  # Start from a YAML command file
  lookout-cli start --config config/commands/start.yaml

  # Runtime settings
  lookout-cli set-setting confidenceThreshold 80
  lookout-cli set-setting detectClass car

  # Simple commands (no arguments)
  lookout-cli stop
  lookout-cli health

  # Print published packets
  lookout-cli watch --topic inference
"""
    )

    parser.add_argument(
        "--service-id",
        default="cam_01",
        help="Target service ID (default: cam_01)"
    )
    parser.add_argument(
        "--broker",
        default="localhost",
        help="MQTT broker host (default: localhost)"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=1883,
        help="MQTT broker port (default: 1883)"
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    start = subparsers.add_parser('start', help='Start detection and video streams')
    start.add_argument('data_url', nargs='?', help='Detection stream URL')
    start.add_argument('--video-url', default="", help='Video stream URL or capture device')
    start.add_argument('--config', help='YAML file with data_url/video_url')

    set_setting = subparsers.add_parser('set-setting', help='Change a runtime setting')
    set_setting.add_argument('name', help='confidenceThreshold or detectClass')
    set_setting.add_argument('value', help='New value')

    subparsers.add_parser('stop', help='Stop both streams')
    subparsers.add_parser('health', help='Sample and report health')

    watch_parser = subparsers.add_parser('watch', help='Print inference packets')
    watch_parser.add_argument('--topic', default="inference", help='Inference topic')

    return parser


def main():
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        if args.command == 'watch':
            watch(args.topic, args.broker, args.port)
            return

        command = build_command(args)
        send_command(command, args.service_id, args.broker, args.port)

    except Exception as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
