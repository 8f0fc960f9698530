"""
FAISS helpers for the faiss-backed neighborhood oracle.

faiss is imported lazily so the brute-force backend works on machines where
the faiss wheel is missing; GPU support is detected once and cached.
"""

import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)

_faiss_module: Optional[Any] = None
_gpu_count: int = 0


def get_faiss():
    """
    Import faiss (once) and return the module.

    Raises:
        ImportError: If neither faiss-cpu nor faiss-gpu is installed
    """
    global _faiss_module, _gpu_count

    if _faiss_module is not None:
        return _faiss_module

    try:
        import faiss
    except ImportError as e:
        raise ImportError(
            "The faiss neighborhood backend needs faiss: "
            "pip install faiss-cpu (or faiss-gpu)"
        ) from e

    get_num_gpus = getattr(faiss, "get_num_gpus", None)
    try:
        _gpu_count = get_num_gpus() if get_num_gpus is not None else 0
    except RuntimeError as e:
        logger.warning(f"Could not query faiss GPUs ({e}), using CPU indexes")
        _gpu_count = 0

    logger.info(f"faiss {getattr(faiss, '__version__', '?')} loaded, {_gpu_count} GPU(s) visible")
    _faiss_module = faiss
    return faiss


def is_faiss_available() -> bool:
    """True if faiss can be imported."""
    try:
        get_faiss()
    except ImportError:
        return False
    return True


def is_gpu_available() -> bool:
    """True if faiss is installed with GPU support and sees at least one GPU."""
    return is_faiss_available() and _gpu_count > 0


def move_index_to_gpu(index, gpu_id: int = 0):
    """
    Copy a CPU index to GPU `gpu_id`.

    Returns the GPU index, or the unchanged CPU index when no GPU is usable.
    """
    if not is_gpu_available():
        logger.info("No faiss GPU available, range queries stay on CPU")
        return index

    faiss = get_faiss()
    try:
        return faiss.index_cpu_to_gpu(faiss.StandardGpuResources(), gpu_id, index)
    except RuntimeError as e:
        logger.warning(f"Moving index to GPU {gpu_id} failed ({e}), keeping CPU index")
        return index
