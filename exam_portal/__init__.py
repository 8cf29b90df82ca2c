"""Application package for the Exam Portal training & assessment service."""
