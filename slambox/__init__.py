"""Visual SLAM building blocks: Lie groups, curve fitting, pose graphs, dense mapping and visual odometry components."""

__version__ = "0.1.0"