"""
Attendance Dispatch Module

Delivers confirmed recognitions to the attendance sink and the notification
channel. The recognition loop only enqueues MatchConfirmed events; the
dispatcher drains the queue on its own task so sink latency never delays
frame processing.
"""

import asyncio
import json
import logging
import os
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Protocol

from .matcher import Match

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchConfirmed:
    """First recognition of an identity within a recognition session."""
    match: Match
    session_id: Optional[str]
    timestamp: datetime


@dataclass(frozen=True)
class AttendanceRecord:
    identity_id: str
    session_id: str
    confidence: float  # 0-1 fraction of the match confidence
    timestamp: datetime
    method: str = 'ai'
    status: str = 'present'
    location: str = 'Live Recognition'


@dataclass(frozen=True)
class Notification:
    type: str  # success, info, warning or error
    message: str
    description: Optional[str] = None


class AttendanceSink(Protocol):
    def record(self, record: AttendanceRecord) -> bool:
        ...


class Notifier(Protocol):
    def notify(self, notification: Notification) -> None:
        ...


class LoggingNotifier:
    """Notification channel that writes to the application log."""
    
    LEVELS = {
        'success': logging.INFO,
        'info': logging.INFO,
        'warning': logging.WARNING,
        'error': logging.ERROR
    }
    
    def __init__(self, name: str = 'face_attendance.notifications'):
        self.logger = logging.getLogger(name)
    
    def notify(self, notification: Notification) -> None:
        level = self.LEVELS.get(notification.type, logging.INFO)
        text = notification.message
        if notification.description:
            text = f"{text} - {notification.description}"
        self.logger.log(level, text)


class JsonlAttendanceSink:
    """Appends attendance records to a JSON-lines file."""
    
    def __init__(self, config: Dict[str, Any]):
        """
        Initialize attendance sink.
        
        Args:
            config: Configuration dictionary with attendance settings
        """
        attendance_config = config.get('attendance', {})
        self.records_file = attendance_config.get('records_file', 'data/attendance.jsonl')
        
        directory = os.path.dirname(self.records_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
    
    def record(self, record: AttendanceRecord) -> bool:
        """
        Append one attendance record.
        
        Returns:
            True if the record was written
        """
        entry: Dict[str, Any] = asdict(record)
        entry['id'] = f"attendance_{uuid.uuid4().hex}"
        entry['timestamp'] = record.timestamp.isoformat()
        
        try:
            with open(self.records_file, 'a', encoding='utf-8') as f:
                f.write(json.dumps(entry) + '\n')
        except OSError as e:
            logger.error(f"Failed to record attendance: {e}")
            return False
        
        logger.debug(f"Recorded attendance for {record.identity_id} in session {record.session_id}")
        return True


class AttendanceDispatcher:
    """Consumes MatchConfirmed events: records attendance and notifies."""
    
    def __init__(self, events: 'asyncio.Queue[MatchConfirmed]',
                 sink: Optional[AttendanceSink], notifier: Notifier):
        self.events = events
        self.sink = sink
        self.notifier = notifier
        self.records_written = 0
        self.records_failed = 0
        self._task: Optional[asyncio.Task] = None
    
    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()
    
    def start(self):
        """Start draining events on a background task."""
        if not self.is_running:
            self._task = asyncio.create_task(self._run())
    
    async def stop(self):
        """Deliver queued events, then stop the background task."""
        await self.events.join()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
    
    async def _run(self):
        while True:
            event = await self.events.get()
            try:
                await self.handle(event)
            except Exception as e:
                logger.error(f"Failed to dispatch recognition of {event.match.identity_id}: {e}")
            finally:
                self.events.task_done()
    
    async def handle(self, event: MatchConfirmed):
        """Record attendance for one confirmed match and publish a notification."""
        match = event.match
        
        if event.session_id and self.sink is not None:
            record = AttendanceRecord(
                identity_id=match.identity_id,
                session_id=event.session_id,
                confidence=match.confidence / 100.0,
                timestamp=event.timestamp
            )
            recorded = await asyncio.to_thread(self.sink.record, record)
            
            if not recorded:
                self.records_failed += 1
                self.notifier.notify(Notification(
                    type='error',
                    message=f"{match.display_name} recognized",
                    description='Failed to record attendance'
                ))
                return
            
            self.records_written += 1
            description = f"Confidence: {match.confidence}% - Attendance marked"
        else:
            description = f"Confidence: {match.confidence}%"
        
        self.notifier.notify(Notification(
            type='success',
            message=f"{match.display_name} recognized",
            description=description
        ))
