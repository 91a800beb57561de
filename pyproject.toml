[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ddrslam"
version = "0.1.0"
description = "Keyframe map structures, two-view initialization and dynamic-object masking for RGB-D SLAM"
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = ["slam", "rgbd", "computer-vision", "keyframe", "inpainting", "dynamic-objects"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Scientific/Engineering :: Image Processing",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["ddrslam"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true
