"""
Groups face crops into fixed-length temporal blocks.

Blocks are non-overlapping runs of BLOCK_LENGTH consecutive crops in
extraction order; a trailing partial run is dropped. All blocks of a request
share one contiguous float32 tensor of shape (n, H, W, BLOCK_LENGTH, 3),
RGB scaled to [0, 1], which is the classifier's input layout.
"""

import logging
from dataclasses import dataclass, field

import numpy as np

from pipeline.config import BLOCK_LENGTH
from pipeline.errors import ResourceExhaustion

logger = logging.getLogger(__name__)


@dataclass
class TemporalBlock:
    index: int
    frame_indices: tuple


@dataclass
class BlockBatch:
    tensor: np.ndarray
    blocks: list = field(default_factory=list)

    def __len__(self):
        return len(self.blocks)


def block_count(crop_count):
    return crop_count // BLOCK_LENGTH


class BlockBatcher:

    def __init__(self, crop_size=128, chunk_size=8):
        self.crop_size = crop_size
        self.chunk_size = max(1, chunk_size)

    def batch(self, crops, executor=None):
        """
        Build the BlockBatch for an ordered list of FaceCrops.

        Args:
            crops: FaceCrops in extraction order.
            executor: optional executor; disjoint block ranges are filled
                concurrently when given.

        Returns:
            BlockBatch, empty when fewer than BLOCK_LENGTH crops exist.
        """
        n = block_count(len(crops))
        size = self.crop_size
        try:
            tensor = np.empty((n, size, size, BLOCK_LENGTH, 3), dtype=np.float32)
        except MemoryError as exc:
            raise ResourceExhaustion(f"Cannot allocate tensor for {n} blocks") from exc

        blocks = [
            TemporalBlock(
                index=b,
                frame_indices=tuple(
                    c.frame_index for c in crops[b * BLOCK_LENGTH:(b + 1) * BLOCK_LENGTH]
                ),
            )
            for b in range(n)
        ]

        ranges = [(s, min(n, s + self.chunk_size)) for s in range(0, n, self.chunk_size)]
        if executor is None or len(ranges) <= 1:
            for start, stop in ranges:
                self._fill(tensor, crops, start, stop)
        else:
            futures = [executor.submit(self._fill, tensor, crops, start, stop)
                       for start, stop in ranges]
            for future in futures:
                future.result()

        logger.debug("Built %d blocks from %d crops", n, len(crops))
        return BlockBatch(tensor=tensor, blocks=blocks)

    def _fill(self, tensor, crops, start, stop):
        for b in range(start, stop):
            group = crops[b * BLOCK_LENGTH:(b + 1) * BLOCK_LENGTH]
            for slot, crop in enumerate(group):
                if crop.image.shape != (self.crop_size, self.crop_size, 3):
                    raise ValueError(
                        f"Crop from frame {crop.frame_index} has shape {crop.image.shape}"
                    )
                # (H, W, 3) uint8 -> block[:, :, slot, :] in [0, 1]
                np.multiply(crop.image, 1.0 / 255.0, out=tensor[b, :, :, slot, :], casting="unsafe")
