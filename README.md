# ddrslam

Building blocks for an RGB-D SLAM pipeline that copes with moving objects.
The package is pure Python on top of NumPy and works with plain arrays and
duck-typed frame objects: poses are 4×4 `numpy` world-to-camera matrices,
depth maps are `float32` images and masks are `uint8` images where `1`
marks static pixels.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## What is inside

| Module | Contents |
| --- | --- |
| `ddrslam.slam_map` | `Map`: thread-safe set of keyframes and map points, the highest keyframe id seen, reference map points and a counter of big changes. |
| `ddrslam.keyframe` | `KeyFrame`: pose and camera centre, covisibility graph, spanning tree, loop edges, map point associations, grid lookup of keypoints, stereo unprojection and median scene depth. |
| `ddrslam.keyframe_database` | `KeyFrameDatabase`: inverted index over visual words giving loop and relocalisation candidates. |
| `ddrslam.two_view` | `compute_h21`, `compute_f21`, `triangulate`, `normalize`, `decompose_e`. |
| `ddrslam.model_scoring` | `check_homography`, `check_fundamental` and `check_rt` (returning an `RTCheck`) for scoring motion hypotheses. |
| `ddrslam.initializer` | `Initializer`: RANSAC over homography and fundamental models in two threads; returns a `Reconstruction` or `None`. |
| `ddrslam.frame_store` | `FrameDatabase` ring buffer of past keyframes, `rotm2euler`, `is_rotation_matrix`, `select_ref_frames`. |
| `ddrslam.dynamic_points` | `DynKeyPoint`, `is_in_frame` and `extract_dyn_points` to find points on moving objects. |
| `ddrslam.masks` | `region_growing`, `depth_region_growing`, `combine_masks`, `closest_non_empty_coordinates`, `is_in_image`. |
| `ddrslam.geometry` | `Geometry`, the dynamic-object pipeline, and `fill_rgbd` for inpainting from stored keyframes (returns an `InpaintResult`). |

## Example: keeping a map

```python
from ddrslam.slam_map import Map

slam_map = Map()
slam_map.add_keyframe(keyframe)      # any object with an integer ``id``
slam_map.add_map_point(point)
slam_map.inform_new_big_change()

print(slam_map.keyframes_in_map(), slam_map.map_points_in_map())
print(slam_map.last_big_change_idx(), slam_map.max_kf_id())
```

`KeyFrame(frame, slam_map, database)` copies what it needs from a frame
object; the attributes it reads are listed in the docstring of
`ddrslam.keyframe`. When a keyframe is set bad it removes itself from the
map and the database it was given.

## Example: masking dynamic content

Frames handed to `Geometry` carry `fx`, `fy`, `cx`, `cy`, a pose `tcw`
(or `None` when tracking is lost), `im_depth`, `im_mask` and `is_keyframe`;
stored frames also carry `im_gray`, `im_rgb`, `keys` and `keys_un`
(keypoints with a `pt` of `(x, y)`).

```python
from ddrslam.geometry import Geometry

geometry = Geometry()

# for every tracked frame
mask = geometry.geometric_model_correction(frame, depth, mask)
geometry.update_db(frame)

# fill the masked-out regions from stored keyframes
mask, gray, depth, rgb = geometry.inpaint_frames(frame, gray, depth, rgb, mask)
```

`Geometry` keeps a ring buffer (`FrameDatabase` of capacity 20, holding up
to 19 keyframes). Once it holds at least 5, up to 5 reference frames
farthest from the current pose are chosen; reference keypoints are
projected into the current frame, and where the measured depth is much
nearer than predicted over a flat depth patch, the spot is grown into a
region on the depth map, dilated and set to 0 in the mask. Until then, or
when the pose is `None`, the mask comes back unchanged.

`inpaint_frames` splats static pixels of the stored keyframes into the
masked-out area, keeping the nearest surface; pixels that stay uncovered
are 0 in all outputs. Pass `rgb=None` to fill only gray and depth.

## Example: two-view initialization

```python
from ddrslam.initializer import Initializer

initializer = Initializer(reference_keys, k, sigma=1.0, iterations=200)
result = initializer.initialize(current_keys, matches12)
if result is not None:
    print(result.rotation, result.translation)
```

Keypoints are `(x, y)` pairs or objects with a `pt` attribute.
`matches12[i]` holds the index of the current keypoint matched to reference
keypoint `i`, or a negative value when there is no match. Fewer than eight
matches raise `ValueError`.

## What the package does not do

It provides data structures and geometric routines only. There is no
feature extraction, no tracking loop, no local mapping or loop-closing
thread, no bundle adjustment or pose-graph optimisation, no vocabulary
(the `KeyFrameDatabase` takes one you supply with `len()` and `score()`),
no viewer, no trajectory files and no command-line program.