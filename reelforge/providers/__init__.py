from .base import (
    GeneratedImage,
    GeneratedVideo,
    ImageGenerator,
    ImageRequest,
    VideoGenerator,
    VideoRequest,
)
from .factory import create_image_generator, create_video_generator

__all__ = [
    "GeneratedImage",
    "GeneratedVideo",
    "ImageGenerator",
    "ImageRequest",
    "VideoGenerator",
    "VideoRequest",
    "create_image_generator",
    "create_video_generator",
]
