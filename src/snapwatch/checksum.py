"""Content checksums for change detection."""

import hashlib
import threading

from .file_access import ReadonlyFile, translate_os_error

CHUNK_SIZE = 65536


class ChecksumGenerator:
    """
    Computes hex digests of file content.

    Content is streamed in chunks so large files are never held in memory.
    The number of computed checksums is kept in calls.
    """

    def __init__(self, algorithm: str = "sha1"):
        hashlib.new(algorithm)
        self.algorithm = algorithm
        self.calls = 0
        self._lock = threading.Lock()

    def checksum(self, file: ReadonlyFile) -> str:
        """
        Compute the checksum of a file's content.

        Args:
            file: File to read

        Returns:
            Hex digest of the content

        Raises:
            FileAccessError: If the content cannot be read
        """
        with self._lock:
            self.calls += 1
        hasher = hashlib.new(self.algorithm)
        try:
            with file.open_content_stream() as stream:
                for chunk in iter(lambda: stream.read(CHUNK_SIZE), b""):
                    hasher.update(chunk)
        except OSError as e:
            raise translate_os_error(e, file.path) from e
        return hasher.hexdigest()
