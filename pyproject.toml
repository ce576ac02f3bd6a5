[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "slamkit"
version = "0.1.0"
description = "Visual odometry and bundle adjustment building blocks: ORB features, pose estimation, triangulation, optical flow, the direct method and BAL bundle adjustment"
requires-python = ">=3.10"
keywords = [
    "slam",
    "visual-odometry",
    "bundle-adjustment",
    "orb",
    "optical-flow",
    "pose-estimation",
    "triangulation",
    "computer-vision",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Processing",
]
dependencies = [
    "numpy",
    "scipy",
    "pillow",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
slamkit-ba = "slamkit.bundle_adjustment:main"
slamkit-orb = "slamkit.orb:main"
slamkit-optical-flow = "slamkit.optical_flow:main"
slamkit-direct = "slamkit.direct_method:main"

[tool.hatch.build.targets.wheel]
packages = ["slamkit"]

[tool.pytest.ini_options]
addopts = "-ra"
