"""Bridge between a Vantage InFusion controller and a home-automation host."""

__version__ = "0.1.0"
