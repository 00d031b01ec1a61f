"""Terra submission verification.

Verifies student eco-quest submissions through a seven-step pipeline
(file validation, EXIF analysis, GPS geofencing, duplicate detection,
image analysis, content moderation, final decision) and maps the outcome
onto submission status and points.
"""

__version__ = "0.1.0"
