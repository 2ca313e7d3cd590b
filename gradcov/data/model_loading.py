"""Loading trained models from disk."""

import logging
from pathlib import Path
from typing import Union

import torch
import torch.nn as nn

from gradcov_exceptions import ModelLoadError

logger = logging.getLogger(__name__)


def load_model(path: Union[str, Path], map_location: str = 'cpu') -> nn.Module:
    """
    Load a trained model saved with ``torch.save(model)``.

    TorchScript archives are dispatched to ``torch.jit.load`` by ``torch.load``.
    The model is returned in eval mode.
    """
    path = Path(path)
    if not path.is_file():
        raise ModelLoadError(str(path), "file does not exist")

    try:
        model = torch.load(str(path), map_location=map_location, weights_only=False)
    except Exception as e:
        raise ModelLoadError(str(path), f"{type(e).__name__}: {e}") from e

    if not isinstance(model, nn.Module):
        raise ModelLoadError(
            str(path), f"expected a torch.nn.Module, got {type(model).__name__}"
        )

    model.eval()
    logger.info(f"Loaded {type(model).__name__} from {path}")
    return model
