"""FitLife personalization engine: scoring, segmentation and cache-aside recommendations."""

__version__ = "1.0.0"
