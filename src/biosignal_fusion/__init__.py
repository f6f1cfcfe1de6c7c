"""Biosignal fusion — stabilised affect, attention and fatigue from face-tracker features."""

__version__ = "0.1.0"
