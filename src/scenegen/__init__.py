"""Scene media generation: storyboard scenes to generated images and videos."""

__version__ = "0.1.0"
