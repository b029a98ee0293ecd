"""pixeltrigger: screen detection engine that turns on-screen matches and
meter changes into device actions."""

__version__ = "0.1.0"
