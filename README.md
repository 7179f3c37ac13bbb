# posekit

Geometry and decision rules for visual tracking, in plain Python on top of NumPy.

## What is inside

- `posekit.epnp`: the EPnP closed-form pose solver `solve_epnp`, which returns
  a `PoseEstimate` (rotation, translation, mean reprojection error). Also
  `CameraIntrinsics` (with `project`), `reprojection_error`, a Householder
  least-squares `qr_solve` (it raises `SingularMatrixError` on an all-zero
  column), `mat_to_quat` and `relative_error` for comparing two poses.
- `posekit.pnp_ransac`: `PnPRansac`, a RANSAC loop around EPnP. It samples
  minimal sets of `Correspondence` values, refines the best hypothesis with
  all of its inliers and returns a `RansacResult`.
- `posekit.sim3`: `Sim3Solver`, RANSAC estimation of a similarity transform
  between points seen from two keyframes (`Sim3Match`). `compute_sim3` is the
  closed-form alignment based on unit quaternions. The module also provides
  `rodrigues`, `project` and `from_camera_to_image`.
- `posekit.settings`: reads camera and ORB-extractor settings from YAML text
  or a file (`parse_settings`, `load_settings`) for a given `Sensor`. It
  accepts a `%YAML` directive line and `opencv-matrix` nodes. Missing keys
  read as 0.
- `posekit.tracking_state`: `TrackingState`, `Strategy` and `choose_strategy`
  pick how a frame's initial pose is estimated. `local_map_tracking_ok`,
  `projection_search_radius` and `motion_model_radius` give the related
  thresholds.
- `posekit.keyframe_policy`: `need_new_keyframe` takes a `KeyFrameContext`
  and returns a `KeyFrameDecision`. `count_close_points` is also here.
- `posekit.local_keyframes`: `select_local_keyframes` and
  `collect_local_points` build the local map from `KeyFrameNode` graphs.
- `posekit.depth_selection`: `plan_depth_points` decides which stereo or
  RGB-D keypoints become new map points and returns a `PointPlan`.
- `posekit.trajectory`: `save_trajectory_tum`, `save_trajectory_kitti` and
  `save_keyframe_trajectory_tum` write trajectories from `FrameRecord` and
  `KeyFrameRecord` values. The same module provides `camera_poses` and
  `rotation_to_quaternion`. The two frame-trajectory writers raise
  `ValueError` for a monocular sensor.
- `posekit.viewer_control`: `ViewerControl`, the thread-safe stop, release
  and finish handshake that a display loop uses. `ViewerSettings` is built
  with `viewer_settings_from_mapping`.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Example: pose from 2D–3D matches

```python
import numpy as np
from posekit.epnp import CameraIntrinsics, solve_epnp

camera = CameraIntrinsics(fu=500.0, fv=500.0, uc=320.0, vc=240.0)
points_3d = np.random.default_rng(0).uniform(-1, 1, size=(20, 3)) + [0, 0, 5]
points_2d = camera.project(points_3d)

estimate = solve_epnp(points_3d, points_2d, camera)
print(estimate.rotation, estimate.translation, estimate.error)
```

## Example: robust pose with outliers

```python
import random
from posekit.pnp_ransac import Correspondence, PnPRansac

matches = [Correspondence(tuple(p), tuple(q)) for p, q in zip(points_3d, points_2d)]
solver = PnPRansac(matches, camera, random.Random(0))
solver.set_ransac_parameters(min_inliers=10, max_iterations=200)
result = solver.find()
if result.success:
    print(result.pose, result.n_inliers)
```

`matches` may contain `None` entries. Correspondences marked `bad` are
ignored. `RansacResult.inliers` has one flag per entry of `matches`. The
solver keeps its iteration count between calls, so `iterate(n)` can be called
repeatedly until `no_more` is true.

## Example: trajectory export

```python
from posekit.trajectory import save_keyframe_trajectory_tum

save_keyframe_trajectory_tum("keyframes.txt", keyframes)
```

Here `keyframes` is a sequence of `KeyFrameRecord` values. Bad keyframes are
skipped, and the rest are written in order of id as
`timestamp tx ty tz qx qy qz qw`.

## What it does not do

posekit works on points, poses and counts that the caller supplies. It does
not:

- read images or extract and match features;
- build or store a map;
- run bundle adjustment or loop closing;
- draw anything.

`ViewerControl` only coordinates a display loop and does not render one.
The package has no command-line program.