"""Camera pose estimation: EPnP with RANSAC, Sim(3) alignment, settings, tracking rules, trajectory export and viewer control."""

__version__ = "0.1.0"

__all__ = [
    "epnp",
    "pnp_ransac",
    "viewer_control",
    "sim3",
    "depth_selection",
    "settings",
    "keyframe_policy",
    "tracking_state",
    "local_keyframes",
    "trajectory",
]