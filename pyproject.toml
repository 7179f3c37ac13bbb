[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "posekit"
version = "0.1.0"
description = "Camera pose estimation building blocks: EPnP with RANSAC, Sim(3) alignment, tracking policies and trajectory export."
requires-python = ">=3.10"
keywords = ["pnp", "epnp", "ransac", "sim3", "slam", "pose estimation", "computer vision"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Recognition",
]
dependencies = [
    "numpy",
    "pyyaml",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["posekit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
