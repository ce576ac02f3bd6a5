# slamkit

Building blocks for visual odometry and bundle adjustment, written with
NumPy, SciPy and Pillow.

## Modules

- `slamkit.rotation`: `angle_axis_to_quaternion`, `quaternion_to_angle_axis`,
  `angle_axis_rotate_point`, the skew matrix `hat`, and the exponential and
  logarithm maps `so3_exp`, `so3_log` and `se3_exp`. Quaternions are
  `(w, x, y, z)`; `se3_exp` takes `(rho, phi)` and returns a 4x4 transform.
- `slamkit.sampling`: `rand_double` (uniform in `[0, 1)`) and `rand_normal`
  (standard normal by the polar method). Both take an optional
  `random.Random`.
- `slamkit.bal`: `BALProblem` holds the cameras, points and observations of a
  Bundle Adjustment in the Large dataset. `BALProblem.load` reads a BAL text
  file, optionally turning the rotations into quaternions. `write_to_file`
  writes the BAL text form back, and `write_to_ply` writes the camera centres
  (green) and the points (white) as an ASCII PLY file. `normalize` centres the
  points on their median and scales the median L1 deviation to 100.
  `perturb` adds Gaussian noise to points, rotations and translations. The
  module also has the helpers `median` and `perturb_point3`.
- `slamkit.reprojection`: `cam_projection_with_distortion` projects a point
  with a 9-parameter camera: angle-axis rotation, translation, focal length and
  two radial distortion factors. `SnavelyReprojectionError` is the residual of
  one observation.
- `slamkit.bundle_adjustment`: `residuals` stacks the reprojection residuals
  for a flat parameter vector. `solve_ba` refines a problem in place with
  `scipy.optimize.least_squares` under a Huber loss and a sparse Jacobian
  pattern. It returns the solver result and needs angle-axis cameras.
- `slamkit.orb`: `detect_fast` finds FAST-9 corners with non-maximum
  suppression. `compute_orb` builds 256-bit oriented BRIEF descriptors as
  Python integers, with `None` for keypoints within 16 pixels of the border.
  `hamming_distance` counts differing bits, and `bf_match` does brute-force
  matching into `Match` records. `filter_matches` keeps the matches within
  twice the smallest distance, with a floor of 30.
- `slamkit.pose`: `pixel2cam` maps a pixel to normalised camera coordinates.
  `essential_eight_point` estimates the essential matrix, and `recover_pose`
  picks the `(R, t)` that puts most points in front of both cameras.
  `epipolar_constraint` evaluates `y2^T t^ R y1`.
  `bundle_adjustment_gauss_newton` refines a 4x4 pose from 3D–2D pairs.
- `slamkit.icp`: `pose_estimation_3d3d` aligns two point sets by SVD, with
  `p1 = R p2 + t`. `bundle_adjustment_3d3d` finds the same pose by
  Levenberg–Marquardt on SE(3).
- `slamkit.triangulation`: `triangulate` turns pixel pairs from two views into
  3D points in the first camera's frame. `get_color` maps a depth to a BGR
  colour.
- `slamkit.optical_flow`: `get_pixel_value` (bilinear lookup), `build_pyramid`,
  `optical_flow_single_level` and `optical_flow_multi_level` give
  Gauss–Newton Lucas–Kanade tracking, forward or inverse.
- `slamkit.direct_method`: `Intrinsics`, `JacobianAccumulator`,
  `direct_pose_estimation_single_layer` and
  `direct_pose_estimation_multi_layer` estimate a 4x4 pose from the
  photometric error at pixels of known depth.

## Installation

```
pip install .
```

To install the test dependencies and run the tests:

```
pip install ".[test]"
pytest
```

## Command-line tools

```
slamkit-ba problem-file.txt
slamkit-orb [img1 img2]
slamkit-optical-flow [img1 img2]
slamkit-direct [data_dir]
```

- `slamkit-ba` loads a BAL file, normalizes it, perturbs it and writes
  `initial.ply`. It then runs `solve_ba`, prints a summary and writes
  `final.ply`.
- `slamkit-orb` reads two images (default `./1.png` and `./2.png`). It
  detects FAST corners, computes ORB descriptors, matches them, prints timings
  and counts, and saves `matches.png`.
- `slamkit-optical-flow` reads two images (default `./LK1.png` and
  `./LK2.png`) and picks corners in the first with a Shi–Tomasi detector. It
  tracks them single-level and multi-level, and saves `tracked_single.png` and
  `tracked_multi.png`.
- `slamkit-direct` reads `left.png`, `disparity.png` and `000001.png` to
  `000005.png` from `data_dir` (default the current directory). It picks 2000
  reference pixels with non-zero disparity and prints the pose estimated for
  each image.

## Library use

```python
import numpy as np

from slamkit.rotation import angle_axis_rotate_point, angle_axis_to_quaternion
from slamkit.reprojection import cam_projection_with_distortion

axis = np.array([0.0, 0.0, np.pi / 2])
print(angle_axis_rotate_point(axis, np.array([1.0, 0.0, 0.0])))  # about [0, 1, 0]
print(angle_axis_to_quaternion(axis))

camera = np.array([0, 0, 0, 0, 0, -5, 500, 0, 0], dtype=float)
print(cam_projection_with_distortion(camera, np.array([0.1, 0.2, 0.0])))  # [10, 20]
```

Bundle adjustment on a BAL file:

```python
from slamkit.bal import BALProblem
from slamkit.bundle_adjustment import solve_ba

problem = BALProblem.load("problem-file.txt", False)
problem.normalize()
problem.write_to_ply("initial.ply")
result = solve_ba(problem, 100, 1.0)
print(result.cost)
problem.write_to_ply("final.ply")
```

Two-view geometry from matched pixels:

```python
from slamkit.pose import essential_eight_point, recover_pose
from slamkit.triangulation import triangulate

# points1, points2: (N, 2) pixel arrays with N >= 8
essential = essential_eight_point(points1, points2)
rotation, translation = recover_pose(essential, points1, points2)
points_3d = triangulate(points1, points2, rotation, translation)
```

## What the package does not do

- It shows no windows. The command-line tools print to the terminal and save
  PNG or PLY files.
- `slamkit.pose`, `slamkit.icp` and `slamkit.triangulation` work on point
  arrays only. No command goes from two images to a pose, a set of 3D points or
  a 3D–3D alignment, and nothing reads depth images for them. Matching features
  and reading depths is left to the caller; `slamkit.orb` can supply the
  matches.
- No fundamental or homography matrix is estimated, and the essential matrix
  is fitted to all correspondences without outlier rejection.
- Bundle adjustment works only on problems loaded with angle-axis rotations,
  not quaternions.