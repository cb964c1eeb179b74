"""bucketfs: A hierarchical filesystem facade over S3-compatible buckets."""

from .base import FileAccessHints, FileItem, FileStream
from .bucket import BucketFS
from .cancellation import CancellationToken, OperationCancelledError
from .config import MIN_PART_SIZE, S3FSConfig, connect_fs, create_client, resolve_credentials
from .memory import MemoryS3Client
from .paths import PathCodec, normalize_path
from .rangefile import ObjectReadStream, RandomAccessReadStream
from .resumable import ResumableUploadStream, UploadState
from .upload import upload_directory
from .writefile import S3WriteStream

__all__ = [
    "BucketFS",
    "CancellationToken",
    "connect_fs",
    "create_client",
    "FileAccessHints",
    "FileItem",
    "FileStream",
    "MemoryS3Client",
    "MIN_PART_SIZE",
    "normalize_path",
    "ObjectReadStream",
    "OperationCancelledError",
    "PathCodec",
    "RandomAccessReadStream",
    "resolve_credentials",
    "ResumableUploadStream",
    "S3FSConfig",
    "S3WriteStream",
    "upload_directory",
    "UploadState",
]
