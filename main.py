#!/usr/bin/env python3
"""
Face Attendance - Main Entry Point

Run this file to enroll faces or start live recognition.
"""

import sys

from face_attendance.main import main

if __name__ == '__main__':
    sys.exit(main())
