"""Keyframe map structures, two-view initialization and dynamic-object masking for RGB-D SLAM."""

__version__ = "0.1.0"

__all__ = [
    "dynamic_points",
    "frame_store",
    "geometry",
    "initializer",
    "keyframe",
    "keyframe_database",
    "masks",
    "model_scoring",
    "slam_map",
    "two_view",
]