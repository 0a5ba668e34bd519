"""
Temporal-block deepfake classifier.

Inputs:
  video_block   (batch, H, W, 4, 3)  - 4 consecutive RGB face crops in [0, 1]
  aux_features  (batch, 140)         - texture feature vector (GLCM/LBP slot)

Output: (batch, 1) - P(fake) per block
"""

import os

import torch
import torch.nn as nn

from pipeline.errors import ModelLoadError


class TemporalBlockNet(nn.Module):
    """
    Small 3D CNN over a block of 4 face crops, fused with an auxiliary
    feature vector before the sigmoid head.
    """

    def __init__(self, aux_feature_width=140):
        super().__init__()

        self.features = nn.Sequential(
            # (batch, 3, 4, H, W)
            nn.Conv3d(3, 32, kernel_size=(2, 3, 3), padding=(0, 1, 1)),
            nn.BatchNorm3d(32),
            nn.ReLU(inplace=True),
            nn.MaxPool3d(kernel_size=(1, 2, 2)),

            nn.Conv3d(32, 64, kernel_size=(2, 3, 3), padding=(0, 1, 1)),
            nn.BatchNorm3d(64),
            nn.ReLU(inplace=True),
            nn.MaxPool3d(kernel_size=(1, 2, 2)),

            nn.Conv3d(64, 128, kernel_size=(2, 3, 3), padding=(0, 1, 1)),
            nn.BatchNorm3d(128),
            nn.ReLU(inplace=True),
            nn.AdaptiveAvgPool3d(1),
        )

        self.aux = nn.Sequential(
            nn.Linear(aux_feature_width, 64),
            nn.ReLU(),
        ) if aux_feature_width > 0 else None

        fused = 128 + (64 if self.aux is not None else 0)
        self.classifier = nn.Sequential(
            nn.Linear(fused, 128),
            nn.ReLU(),
            nn.Dropout(0.3),
            nn.Linear(128, 1),
            nn.Sigmoid()
        )

    def forward(self, video_block, aux_features=None):
        # (batch, H, W, T, C) -> (batch, C, T, H, W)
        x = video_block.permute(0, 4, 3, 1, 2)
        x = self.features(x).flatten(1)
        if self.aux is not None:
            x = torch.cat([x, self.aux(aux_features)], dim=1)
        return self.classifier(x)


def load_temporal_block_model(path, device, aux_feature_width=140):
    """Load trained weights into a TemporalBlockNet in eval mode."""
    if not os.path.exists(path):
        raise ModelLoadError(f"Classifier weights not found: {path}")
    try:
        model = TemporalBlockNet(aux_feature_width=aux_feature_width).to(device)
        model.load_state_dict(torch.load(path, map_location=device, weights_only=False))
    except (RuntimeError, OSError) as exc:
        raise ModelLoadError(f"Could not load classifier from {path}: {exc}") from exc
    model.eval()
    return model
