"""CropScan: crop-disease detection backend (accounts, leaf image uploads, ML predictions)."""

__version__ = "0.3.0"
