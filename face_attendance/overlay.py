"""
Overlay Drawing

Draws detection boxes, landmarks and match labels on preview frames.
"""

import cv2
import numpy as np
from typing import Dict, List, Sequence

MATCHED_COLOR = (129, 185, 16)   # green (BGR)
UNMATCHED_COLOR = (246, 130, 59)  # blue (BGR)
TEXT_COLOR = (255, 255, 255)

FONT = cv2.FONT_HERSHEY_SIMPLEX
FONT_SCALE = 0.6
FONT_THICKNESS = 2


def annotate_frame(frame: np.ndarray, detections: Sequence, frame_matches: List) -> np.ndarray:
    """
    Annotate a copy of the frame with recognition results.
    
    Args:
        frame: Input frame
        detections: Detections of this frame
        frame_matches: FrameMatch entries referring to detection indices
        
    Returns:
        Annotated frame
    """
    annotated_frame = frame.copy()
    matches: Dict[int, object] = {fm.index: fm.match for fm in frame_matches}
    
    for index, detection in enumerate(detections):
        x, y, w, h = detection.bounds
        match = matches.get(index)
        color = MATCHED_COLOR if match else UNMATCHED_COLOR
        
        cv2.rectangle(annotated_frame, (x, y), (x + w, y + h), color, 2)
        
        for px, py in detection.landmarks:
            cv2.rectangle(annotated_frame, (px - 1, py - 1), (px + 1, py + 1), color, -1)
        
        if match:
            label = f"{match.display_name} ({match.confidence}%)"
            label_size = cv2.getTextSize(label, FONT, FONT_SCALE, FONT_THICKNESS)[0]
            cv2.rectangle(annotated_frame,
                          (x, y - label_size[1] - 10),
                          (x + label_size[0] + 10, y),
                          color, -1)
            cv2.putText(annotated_frame, label, (x + 5, y - 5),
                        FONT, FONT_SCALE, TEXT_COLOR, FONT_THICKNESS)
    
    return annotated_frame


def draw_status(frame: np.ndarray, text: str):
    """Draw a status line in the top-left corner."""
    text_size = cv2.getTextSize(text, FONT, FONT_SCALE, FONT_THICKNESS)[0]
    cv2.rectangle(frame, (8, 30 - text_size[1] - 2), (12 + text_size[0], 32), (0, 0, 0), -1)
    cv2.putText(frame, text, (10, 30), FONT, FONT_SCALE, TEXT_COLOR, FONT_THICKNESS)
