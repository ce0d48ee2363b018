"""Stereo visual odometry components: camera, triangulation, frames, map points, map, configuration, projection edges, back end and dataset reader."""