import logging
import os
from pathlib import Path
from typing import Optional, TextIO, Union

from headpose.core.types import ReferenceModel

log = logging.getLogger(__name__)

DEFAULT_MODEL_PATH = Path(__file__).resolve().parents[1] / "assets" / "model.txt"

ModelSource = Union[str, "os.PathLike[str]", TextIO]


def parse_model_points(text: str) -> ReferenceModel:
    """
    Parse whitespace-separated numbers into (x, y, z) triples.
    Raises ValueError on non-numeric tokens, an empty resource,
    or a token count that is not a multiple of 3.
    """
    values = [float(tok) for tok in text.split()]

    if not values:
        raise ValueError("Invalid model file: no values")
    if len(values) % 3 != 0:
        raise ValueError(f"Invalid model file: number of values ({len(values)}) is not a multiple of 3")

    points = tuple(
        (values[i], values[i + 1], values[i + 2])
        for i in range(0, len(values), 3)
    )
    return ReferenceModel(points=points)


def _read_source(source: ModelSource) -> str:
    if hasattr(source, "read"):
        return source.read()
    with open(source, "r", encoding="utf-8") as f:
        return f.read()


def _try_load(source: ModelSource) -> Optional[ReferenceModel]:
    try:
        model = parse_model_points(_read_source(source))
    except (OSError, TypeError, UnicodeDecodeError, ValueError) as e:
        log.error(f"Error loading model points: {e}")
        return None
    log.info(f"Loaded model points: {model.count} points")
    return model


def load_model_points(source: ModelSource = DEFAULT_MODEL_PATH) -> ReferenceModel:
    """
    Load the reference model. Never raises: any failure is logged and a
    single-point placeholder at the origin is returned instead.
    """
    model = _try_load(source)
    return model if model is not None else ReferenceModel.placeholder()


class ReferenceModelStore:
    """
    Holds the reference model for the process lifetime.
    load() caches the first successful parse; a degraded placeholder is
    returned but not cached, so a later load() retries the source.
    """

    def __init__(self, source: ModelSource = DEFAULT_MODEL_PATH):
        self.source = source
        self._model: Optional[ReferenceModel] = None

    @property
    def loaded(self) -> bool:
        return self._model is not None

    def load(self) -> ReferenceModel:
        if self._model is not None:
            return self._model
        model = _try_load(self.source)
        if model is None:
            return ReferenceModel.placeholder()
        self._model = model
        return model
