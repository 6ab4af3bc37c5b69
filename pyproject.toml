[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "framecrypt"
version = "0.1.0"
description = "AES-128-GCM frame cryptors, per-generation cryptor management and codec-aware splitting of media frames into clear and encrypted parts"
requires-python = ">=3.10"
keywords = ["encryption", "aes-gcm", "media", "h264", "h265", "av1", "vp8", "vp9", "opus", "key-ratchet"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Security :: Cryptography",
    "Topic :: Multimedia :: Video",
    "Topic :: Multimedia :: Sound/Audio",
]
dependencies = [
    "cryptography",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["framecrypt"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
