"""Build QDQ test graphs and compare CPU against accelerator execution providers."""

__version__ = "0.1.0"
