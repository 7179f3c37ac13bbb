"""Camera and feature-extractor settings read from an OpenCV-style YAML file."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

import numpy as np
import yaml

__all__ = [
    "Sensor",
    "CameraSettings",
    "OrbSettings",
    "Settings",
    "parse_settings",
    "load_settings",
]

_DEFAULT_FPS = 30.0
_DEPTH_FACTOR_EPSILON = 1e-5


class Sensor(enum.IntEnum):
    """Kind of input the tracker receives."""

    MONOCULAR = 0
    STEREO = 1
    RGBD = 2


@dataclass(frozen=True)
class CameraSettings:
    """Pinhole intrinsics, distortion coefficients, stereo baseline and frame rate.

    ``distortion`` holds (k1, k2, p1, p2) and, when k3 is non-zero, k3 as a
    fifth entry. ``bf`` is the baseline times fx.
    """

    fx: float
    fy: float
    cx: float
    cy: float
    distortion: tuple[float, ...]
    bf: float
    fps: float
    rgb: bool

    def matrix(self) -> np.ndarray:
        """The 3x3 float32 calibration matrix K."""
        k = np.eye(3, dtype=np.float32)
        k[0, 0] = self.fx
        k[1, 1] = self.fy
        k[0, 2] = self.cx
        k[1, 2] = self.cy
        return k

    def describe(self) -> str:
        """Human-readable summary of the camera parameters."""
        k1, k2, p1, p2 = self.distortion[:4]
        lines = [
            "Camera Parameters: ",
            f"- fx: {self.fx:g}",
            f"- fy: {self.fy:g}",
            f"- cx: {self.cx:g}",
            f"- cy: {self.cy:g}",
            f"- k1: {k1:g}",
            f"- k2: {k2:g}",
        ]
        if len(self.distortion) == 5:
            lines.append(f"- k3: {self.distortion[4]:g}")
        lines += [
            f"- p1: {p1:g}",
            f"- p2: {p2:g}",
            f"- fps: {self.fps:g}",
        ]
        if self.rgb:
            lines.append("- color order: RGB (ignored if grayscale)")
        else:
            lines.append("- color order: BGR (ignored if grayscale)")
        return "\n".join(lines)


@dataclass(frozen=True)
class OrbSettings:
    """Parameters of the ORB feature extractor."""

    n_features: int
    scale_factor: float
    n_levels: int
    ini_th_fast: int
    min_th_fast: int


@dataclass(frozen=True)
class Settings:
    """Everything the tracker reads from its settings file.

    ``th_depth`` (close/far depth threshold) is only set for stereo and
    RGB-D input. ``depth_map_factor`` converts raw depth to metres.
    """

    sensor: Sensor
    camera: CameraSettings
    orb: OrbSettings
    th_depth: Optional[float]
    depth_map_factor: float
    min_frames: int
    max_frames: int


class _Loader(yaml.SafeLoader):
    """Safe loader that also understands OpenCV matrix nodes."""


def _construct_matrix(loader: yaml.SafeLoader, node: yaml.Node) -> np.ndarray:
    data = loader.construct_mapping(node, deep=True)
    return np.array(data["data"], dtype=float).reshape(int(data["rows"]), int(data["cols"]))


_Loader.add_constructor("tag:yaml.org,2002:opencv-matrix", _construct_matrix)


def _strip_directive(text: str) -> str:
    return "\n".join(line for line in text.splitlines() if not line.startswith("%YAML"))


def _number(values: Mapping[str, Any], key: str) -> float:
    value = values.get(key)
    if value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"setting {key!r} is not a number: {value!r}") from exc


def parse_settings(text: str, sensor: Sensor) -> Settings:
    """Parse settings text; keys that are missing read as 0."""
    sensor = Sensor(sensor)
    values = yaml.load(_strip_directive(text), Loader=_Loader)
    if values is None:
        values = {}
    if not isinstance(values, Mapping):
        raise ValueError("settings document must be a mapping")

    fx = _number(values, "Camera.fx")
    distortion = [
        _number(values, "Camera.k1"),
        _number(values, "Camera.k2"),
        _number(values, "Camera.p1"),
        _number(values, "Camera.p2"),
    ]
    k3 = _number(values, "Camera.k3")
    if k3 != 0:
        distortion.append(k3)

    fps = _number(values, "Camera.fps")
    if fps == 0:
        fps = _DEFAULT_FPS

    bf = _number(values, "Camera.bf")
    camera = CameraSettings(
        fx=fx,
        fy=_number(values, "Camera.fy"),
        cx=_number(values, "Camera.cx"),
        cy=_number(values, "Camera.cy"),
        distortion=tuple(distortion),
        bf=bf,
        fps=fps,
        rgb=bool(int(_number(values, "Camera.RGB"))),
    )

    orb = OrbSettings(
        n_features=int(_number(values, "ORBextractor.nFeatures")),
        scale_factor=_number(values, "ORBextractor.scaleFactor"),
        n_levels=int(_number(values, "ORBextractor.nLevels")),
        ini_th_fast=int(_number(values, "ORBextractor.iniThFAST")),
        min_th_fast=int(_number(values, "ORBextractor.minThFAST")),
    )

    th_depth: Optional[float] = None
    if sensor in (Sensor.STEREO, Sensor.RGBD):
        th_depth = bf * _number(values, "ThDepth") / fx

    depth_map_factor = 1.0
    if sensor is Sensor.RGBD:
        raw = _number(values, "DepthMapFactor")
        if abs(raw) >= _DEPTH_FACTOR_EPSILON:
            depth_map_factor = 1.0 / raw

    return Settings(
        sensor=sensor,
        camera=camera,
        orb=orb,
        th_depth=th_depth,
        depth_map_factor=depth_map_factor,
        min_frames=0,
        max_frames=int(fps),
    )


def load_settings(path, sensor: Sensor) -> Settings:
    """Read and parse a settings file."""
    return parse_settings(Path(path).read_text(encoding="utf-8"), sensor)