import logging
import os
import struct

from app.exceptions import CheckpointError, CheckpointNotFound

logger = logging.getLogger(__name__)

# Fixed width, native-endian unsigned 64-bit integer
_FORMAT = "=Q"
_SIZE = struct.calcsize(_FORMAT)
_MAX_INDEX = 2 ** 64 - 1


class CheckpointStore:
    """Durable storage of the last pay index handed to the payment backend"""

    def __init__(self, path: str):
        self.path = path

    def read(self) -> int:
        """Return the persisted index, or raise CheckpointNotFound / CheckpointError"""
        try:
            with open(self.path, "rb") as f:
                data = f.read(_SIZE + 1)
        except FileNotFoundError:
            raise CheckpointNotFound(f"No checkpoint at {self.path}")
        except OSError as e:
            raise CheckpointError(f"Could not read checkpoint {self.path}: {str(e)}")

        if len(data) != _SIZE:
            raise CheckpointError(f"Checkpoint {self.path} has {len(data)} bytes, expected {_SIZE}")

        return struct.unpack(_FORMAT, data)[0]

    def write(self, index: int) -> None:
        """Replace the persisted index; the value is on disk when this returns"""
        if not 0 <= index <= _MAX_INDEX:
            raise CheckpointError(f"Pay index {index} is outside the unsigned 64-bit range")

        # first as temp file, then move over top
        tempfile = f"{self.path}.tmp"
        try:
            parent = os.path.dirname(os.path.abspath(self.path))
            os.makedirs(parent, exist_ok=True)

            with open(tempfile, "wb") as f:
                f.write(struct.pack(_FORMAT, index))
                f.flush()
                os.fsync(f.fileno())
            os.replace(tempfile, self.path)
        except OSError as e:
            raise CheckpointError(f"Could not write checkpoint {self.path}: {str(e)}")

        logger.debug(f"Checkpoint {self.path} set to {index}")

    def load_or_initialize(self) -> int:
        """Read the checkpoint, starting from zero when it is missing or unusable"""
        try:
            index = self.read()
        except CheckpointError as e:
            logger.warning(f"Could not read last pay index: {str(e)}")
            index = 0
            try:
                self.write(index)
            except CheckpointError as write_error:
                logger.warning(f"Write error: {str(write_error)}")
        return index
