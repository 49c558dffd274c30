"""BundleHost: on-device supervisor for a remotely configured resource bundle."""

__version__ = "0.1.0"
