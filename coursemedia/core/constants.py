# coursemedia/core/constants.py
"""Constants for video intake and the processing pipeline"""

# Intake limits
DEFAULT_MAX_UPLOAD_SIZE_BYTES = 500 * 1024 * 1024  # 500 MB
UPLOAD_CHUNK_SIZE = 1024 * 1024  # 1 MB

# Default dispatch priorities (higher runs first)
PRIORITY_METADATA_EXTRACTION = 40
PRIORITY_THUMBNAIL_GENERATION = 30
PRIORITY_VIDEO_TRANSCODING = 20
PRIORITY_SUBTITLE_GENERATION = 10

# Progress bounds
MIN_PROGRESS = 0
MAX_PROGRESS = 100

# Storage key prefixes
ORIGINALS_PREFIX = "videos/originals"
RENDITIONS_PREFIX = "videos/transcoded"
SUBTITLES_PREFIX = "videos/subtitles"
THUMBNAILS_PREFIX = "videos/thumbnails"
METADATA_PREFIX = "videos/metadata"

# Roles carried in the bearer token
ROLE_ADMIN = "admin"
ROLE_INSTRUCTOR = "instructor"
ROLE_REVIEWER = "reviewer"
