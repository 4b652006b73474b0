"""
scene-rpc: remote scene updates for visualization front ends

Typed-array message schemas, validation and request/reply framing for
streaming meshes, cameras and scene state from a producer to a viewer.
"""

import logging
import os

logger = logging.getLogger(__name__)

# Lazy CUDA availability check
HAS_CUDA = None
CUDA_DEVICE_NAME = None


def _check_cuda():
    """Lazy check for a usable cupy device."""
    global HAS_CUDA, CUDA_DEVICE_NAME

    if HAS_CUDA is not None:
        return HAS_CUDA

    try:
        import cupy as cp

        if cp.cuda.runtime.getDeviceCount() < 1:
            raise RuntimeError("no CUDA devices visible")
        HAS_CUDA = True
        props = cp.cuda.runtime.getDeviceProperties(0)
        name = props.get("name", b"")
        CUDA_DEVICE_NAME = name.decode() if isinstance(name, bytes) else str(name)
        logger.info("CUDA available: %s", CUDA_DEVICE_NAME)
    except Exception as e:  # cupy raises its own runtime errors without a GPU
        HAS_CUDA = False
        CUDA_DEVICE_NAME = None
        if os.environ.get("SCENE_RPC_CUDA_REQUIRED"):
            raise ImportError("CUDA required but not available") from e
        logger.debug("CUDA not available", exc_info=True)

    return HAS_CUDA


__version__ = "0.1.0"
# Keep import cheap: protocol modules are imported explicitly by callers.
__all__ = ["HAS_CUDA", "_check_cuda", "__version__"]
