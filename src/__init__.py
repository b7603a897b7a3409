from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("sdtd-monitor")
except PackageNotFoundError:
    # Package not installed, fallback for development
    __version__ = "dev"
