"""UJUz Admission Probability Engine."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("ujuz-admission")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
