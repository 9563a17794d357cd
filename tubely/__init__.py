"""Tubely video upload backend.

Accepts MP4 uploads from video owners, prepares them for progressive
streaming and publishes them to object storage.

Modules:
    - core: Configuration, context, database, storage, logging, tracing, metrics
    - modules.auth: Bearer token handling
    - modules.transcoding: Aspect ratio classification and ffmpeg/ffprobe tools
    - modules.video: Video records and the upload pipeline
"""

__version__ = "0.1.0"
