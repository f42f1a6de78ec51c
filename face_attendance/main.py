"""
Main Application Module

Command line front end: face enrollment from the camera, live recognition
with attendance recording, and descriptor database maintenance.
"""

import argparse
import asyncio
import logging
import sys
import cv2
import yaml
from typing import Any, Dict, List, Optional

from .attendance import AttendanceDispatcher, JsonlAttendanceSink, LoggingNotifier
from .descriptor_store import DescriptorStore
from .embedding_provider import FaceEmbeddingProvider, ModelReadiness
from .enrollment import FaceEnroller
from .live_recognition import FrameMatch, LiveRecognizer, StartStatus
from .overlay import annotate_frame, draw_status
from .video_source import CameraSource

logger = logging.getLogger(__name__)

WINDOW_NAME = 'Face Attendance'

DEFAULT_CONFIG: Dict[str, Dict[str, Any]] = {
    'embedding': {
        'detection_model': 'hog',
        'upsample_times': 1,
        'num_jitters': 1
    },
    'enrollment': {
        'samples': 5,
        'sample_delay': 0.5
    },
    'recognition': {
        'match_threshold': 0.6,
        'poll_interval': 0.1,
        'recent_matches': 5
    },
    'storage': {
        'database_file': 'data/face_descriptors.pkl'
    },
    'attendance': {
        'records_file': 'data/attendance.jsonl'
    },
    'video': {
        'camera_id': 0,
        'width': 640,
        'height': 480,
        'fps': 30,
        'display': True
    },
    'logging': {
        'level': 'INFO',
        'log_file': 'face_attendance.log'
    }
}


def load_config(config_path: str) -> Dict[str, Any]:
    """
    Load configuration from a YAML file on top of the defaults.

    Args:
        config_path: Path to configuration file

    Returns:
        Configuration dictionary, defaults only if the file can't be read
    """
    config = {section: dict(values) for section, values in DEFAULT_CONFIG.items()}

    try:
        with open(config_path, 'r') as f:
            loaded = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Failed to load config {config_path}: {e}, using defaults")
        return config

    for section, values in loaded.items():
        if isinstance(values, dict):
            config.setdefault(section, {}).update(values)
        else:
            config[section] = values

    logger.info(f"Configuration loaded from {config_path}")
    return config


def setup_logging(config: Dict[str, Any]):
    """Configure logging to stdout and the configured log file."""
    logging_config = config.get('logging', {})
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    log_file = logging_config.get('log_file')
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, str(logging_config.get('level', 'INFO')).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


class FaceAttendanceApp:
    """Wires the provider, store, enrollment and recognition together."""

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize the face attendance application.

        Args:
            config: Configuration dictionary
        """
        self.config = config
        self.video_config = config.get('video', {})
        self.display = self.video_config.get('display', True)

        self.readiness = ModelReadiness()
        self.provider = FaceEmbeddingProvider(config, self.readiness)
        self.store = DescriptorStore(config)
        self.notifier = LoggingNotifier()

        self.camera: Optional[CameraSource] = None
        self._preview = None

        logger.info("Face attendance application initialized")

    def open_camera(self, source=None) -> bool:
        self.camera = CameraSource(self.config, source)
        return self.camera.open()

    async def enroll(self, identity_id: str, display_name: str, source=None) -> int:
        """
        Enroll a face from the camera.

        Returns:
            Process exit code
        """
        if not await self.provider.load():
            print(f"Models not loaded: {self.readiness.error}")
            return 1

        if not self.open_camera(source):
            return 1

        enroller = FaceEnroller(self.config, self.provider, self.store, self.readiness)

        def report_progress(captured: int, total: int):
            print(f"Captured sample {captured} of {total} ({enroller.progress:.0f}%)")

        print("Look at the camera and stay still...")
        try:
            result = await enroller.enroll(identity_id, display_name, self.camera, report_progress)
        finally:
            self.camera.release()

        print(result.message)
        return 0 if result.success else 1

    async def recognize(self, session_id: Optional[str] = None, source=None) -> int:
        """
        Run live recognition until 'q' is pressed, the video ends or Ctrl+C.

        Returns:
            Process exit code
        """
        if not await self.provider.load():
            print(f"Models not loaded: {self.readiness.error}")
            return 1

        if not self.open_camera(source):
            return 1

        recognizer = LiveRecognizer(
            self.config, self.provider, self.store, self.camera,
            readiness=self.readiness,
            session_id=session_id,
            notifier=self.notifier,
            on_frame=self._update_preview if self.display else None
        )
        dispatcher = AttendanceDispatcher(
            recognizer.events, JsonlAttendanceSink(self.config), self.notifier
        )

        status = recognizer.start()
        if status is not StartStatus.STARTED:
            self.camera.release()
            return 1

        dispatcher.start()
        try:
            await self._wait_for_exit(recognizer)
        finally:
            await recognizer.stop()
            await dispatcher.stop()
            self.camera.release()
            if self.display:
                cv2.destroyAllWindows()

        print(f"Recognized {len(recognizer.session.seen_identities)} people:")
        for match in recognizer.session.recent_matches:
            print(f"  {match.display_name} ({match.identity_id}) - {match.confidence}%")
        return 0

    def _update_preview(self, frame, detections: list, frame_matches: List[FrameMatch]):
        self._preview = annotate_frame(frame, detections, frame_matches)

    async def _wait_for_exit(self, recognizer: LiveRecognizer):
        while not self.camera.ended:
            if self.display:
                preview = self._preview if self._preview is not None else self.camera.last_frame
                if preview is not None:
                    preview = preview.copy()
                    draw_status(preview, f"Recognized: {len(recognizer.session.seen_identities)}")
                    cv2.imshow(WINDOW_NAME, preview)
                if cv2.waitKey(1) & 0xFF == ord('q'):
                    logger.info("Quit requested by user")
                    return
            await asyncio.sleep(0.03)

    def list_enrolled(self) -> int:
        descriptors = self.store.all()
        print(f"Enrolled faces ({len(descriptors)}):")
        for descriptor in descriptors:
            print(f"  {descriptor.identity_id}: {descriptor.display_name} "
                  f"(updated {descriptor.last_updated_at:%Y-%m-%d %H:%M})")
        return 0

    def remove(self, identity_id: str) -> int:
        if self.store.remove(identity_id):
            print(f"Removed face of {identity_id}")
            return 0
        print(f"No enrolled face for {identity_id}")
        return 1

    def export_database(self, path: str) -> int:
        data = self.store.export_json()
        if data is None:
            return 1
        try:
            with open(path, 'w', encoding='utf-8') as f:
                f.write(data)
        except OSError as e:
            logger.error(f"Failed to export database: {e}")
            return 1
        print(f"Exported {self.store.count()} faces to {path}")
        return 0

    def import_database(self, path: str) -> int:
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = f.read()
        except OSError as e:
            logger.error(f"Failed to read {path}: {e}")
            return 1
        if not self.store.import_json(data):
            return 1
        print(f"Imported {self.store.count()} faces from {path}")
        return 0

    def clear(self) -> int:
        return 0 if self.store.clear() else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Face recognition attendance')
    parser.add_argument('--config', '-c', default='config/config.yaml',
                        help='Configuration file path')
    parser.add_argument('--camera', type=int, default=None,
                        help='Camera device ID')
    parser.add_argument('--video', '-v', type=str,
                        help='Video file path (instead of camera)')
    parser.add_argument('--no-display', action='store_true',
                        help='Do not open a preview window')

    actions = parser.add_mutually_exclusive_group(required=True)
    actions.add_argument('--enroll', metavar='ID',
                         help='Enroll the face of an identity')
    actions.add_argument('--recognize', '-r', action='store_true',
                         help='Run live recognition')
    actions.add_argument('--list', '-l', action='store_true',
                         help='List enrolled faces')
    actions.add_argument('--remove', metavar='ID',
                         help='Delete the enrolled face of an identity')
    actions.add_argument('--export', metavar='PATH',
                         help='Export enrolled faces as JSON')
    actions.add_argument('--import', dest='import_path', metavar='PATH',
                         help='Replace enrolled faces with an exported JSON file')
    actions.add_argument('--clear', action='store_true',
                         help='Delete all enrolled faces')

    parser.add_argument('--name', help='Display name for --enroll')
    parser.add_argument('--session', help='Attendance session ID for --recognize')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.enroll and not args.name:
        parser.error('--enroll requires --name')

    config = load_config(args.config)
    if args.no_display:
        config['video']['display'] = False
    setup_logging(config)

    source = args.video if args.video else args.camera

    try:
        app = FaceAttendanceApp(config)

        if args.enroll:
            return asyncio.run(app.enroll(args.enroll, args.name, source))
        if args.recognize:
            return asyncio.run(app.recognize(args.session, source))
        if args.list:
            return app.list_enrolled()
        if args.remove:
            return app.remove(args.remove)
        if args.export:
            return app.export_database(args.export)
        if args.import_path:
            return app.import_database(args.import_path)
        return app.clear()

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    except Exception as e:
        logger.error(f"Application error: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
