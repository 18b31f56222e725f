[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "mcraw"
version = "0.5.0"
description = "Read MotionCam MCRAW containers, decode raw frames and export them as DNG and WAV"
requires-python = ">=3.10"
keywords = ["mcraw", "motioncam", "raw", "dng", "bayer", "wav", "decoder"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: End Users/Desktop",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Graphics :: Graphics Conversion",
    "Topic :: Multimedia :: Video :: Conversion",
]
dependencies = [
    "numpy",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
mcraw = "mcraw.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["mcraw"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true
