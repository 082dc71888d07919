"""UrbanPulse civic issue reporting backend.

Client code that records media on-device uses ``CaptureSession`` to hold the
camera or microphone exclusively, then hands the resulting ``MediaAsset`` to
the submission pipeline in a ``ReportDraft``.
"""

from .capture import CaptureDevice, CaptureSession
from .models import MediaAsset, ReportDraft

__all__ = ["CaptureDevice", "CaptureSession", "MediaAsset", "ReportDraft"]
