"""
core_models – shared wire/domain vocabulary for the anchor sync service.
"""

from .models import Room, Pose, CloudAnchorEntity, UploadCloudAnchorParam

__all__ = ["Room", "Pose", "CloudAnchorEntity", "UploadCloudAnchorParam"]
