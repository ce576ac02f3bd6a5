"""Visual odometry and bundle adjustment: rotations, BAL problems, ORB, pose, ICP, triangulation, optical flow and the direct method."""

__version__ = "0.1.0"

__all__ = [
    "rotation",
    "sampling",
    "bal",
    "reprojection",
    "bundle_adjustment",
    "orb",
    "pose",
    "icp",
    "triangulation",
    "optical_flow",
    "direct_method",
]