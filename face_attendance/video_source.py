"""
Video Source Module

Pull-based access to the latest camera or video-file frame.
"""

import logging
import cv2
import numpy as np
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)


class CameraSource:
    """Frame source over cv2.VideoCapture."""
    
    def __init__(self, config: Dict[str, Any], source: Union[int, str, None] = None):
        """
        Initialize camera source.
        
        Args:
            config: Configuration dictionary with video settings
            source: Camera device ID or video file path (overrides config)
        """
        self.video_config = config.get('video', {})
        self.source = source if source is not None else self.video_config.get('camera_id', 0)
        self.width = self.video_config.get('width', 640)
        self.height = self.video_config.get('height', 480)
        self.fps = self.video_config.get('fps', 30)
        
        self.cap = None
        self.last_frame: Optional[np.ndarray] = None
        self.ended = False
    
    @property
    def is_open(self) -> bool:
        return self.cap is not None and self.cap.isOpened()
    
    def open(self) -> bool:
        """
        Open the camera or video file.
        
        Returns:
            True if the capture device opened successfully
        """
        self.ended = False
        try:
            self.cap = cv2.VideoCapture(self.source)
            
            if not self.cap.isOpened():
                logger.error(f"Failed to open video source {self.source}")
                return False
            
            if isinstance(self.source, int):
                self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
                self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
                self.cap.set(cv2.CAP_PROP_FPS, self.fps)
            
            logger.info(f"Video source {self.source} initialized successfully")
            return True
            
        except cv2.error as e:
            logger.error(f"Camera initialization error: {e}")
            return False
    
    def get_frame(self) -> Optional[np.ndarray]:
        """Read the current frame, or None if the source is not ready."""
        if not self.is_open:
            return None
        
        try:
            ret, frame = self.cap.read()
        except cv2.error as e:
            logger.error(f"Frame read error: {e}")
            return None

        if not ret:
            if isinstance(self.source, int):
                logger.warning("Failed to read frame")
            elif not self.ended:
                logger.info(f"End of video file {self.source}")
                self.ended = True
            return None
        
        self.last_frame = frame
        return frame
    
    def release(self):
        """Release the capture device."""
        if self.cap is not None:
            self.cap.release()
            self.cap = None
            logger.info(f"Video source {self.source} released")
