"""
Batched classifier invocation.

All temporal blocks of a request go to the classifier in a single forward
pass. The auxiliary feature input is kept as zeros: the deployed model
accepts a texture-feature vector alongside each block, but no such features
are computed here, so the zero vector reproduces its existing behaviour.
"""

import logging
from dataclasses import dataclass

import numpy as np
import torch

from pipeline.errors import InferenceFailure, ResourceExhaustion

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InferenceScore:
    block_index: int
    probability: float


class InferenceEngine:
    """Wraps a loaded classifier; shared read-only across requests."""

    def __init__(self, model, device, aux_feature_width=140):
        self.model = model
        self.device = device
        self.aux_feature_width = aux_feature_width

    def score_blocks(self, batch):
        """
        Score every block of a BlockBatch in one classifier call.

        Returns:
            list of InferenceScore in block order, one per block.

        Raises:
            InferenceFailure: the call faulted or returned an unexpected shape.
            ResourceExhaustion: tensors could not be allocated.
        """
        n = len(batch)
        if n == 0:
            return []

        try:
            video_block = torch.from_numpy(batch.tensor).to(self.device)
            aux = torch.zeros((n, self.aux_feature_width), dtype=torch.float32, device=self.device)
            with torch.no_grad():
                out = self.model(video_block, aux)
            preds = out.detach().float().cpu().numpy()
        except (MemoryError, torch.cuda.OutOfMemoryError) as exc:
            raise ResourceExhaustion(f"Out of memory scoring {n} blocks") from exc
        except Exception as exc:
            logger.exception("Classifier call failed for %d blocks", n)
            raise InferenceFailure(f"Classifier call failed: {exc}") from exc

        if preds.ndim == 2 and preds.shape[1] == 1:
            preds = preds[:, 0]
        if preds.shape != (n,):
            raise InferenceFailure(
                f"Classifier returned shape {out.shape}, expected ({n}, 1)"
            )
        if not np.all(np.isfinite(preds)):
            raise InferenceFailure("Classifier returned non-finite scores")

        return [
            InferenceScore(block_index=i, probability=float(np.clip(p, 0.0, 1.0)))
            for i, p in enumerate(preds)
        ]
