"""
Inference provider construction and the shared, load-once handle.

The provider is the Hugging Face ``transformers`` object-detection pipeline
(DETR ResNet-50 by default). Building it downloads weights and initializes
the torch runtime, so a process builds it at most once and every caller
shares the result through a ``SharedHandle``.

Usage:
    handle = SharedHandle(functools.partial(load_detector, cfg))
    detector = handle.get().result()
    detector(image, threshold=0.3)
"""

from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from typing import Any, Callable, Optional

import torch

from detr_demo.config import DemoConfig

logger = logging.getLogger(__name__)


def resolve_device(device: str = "auto") -> str:
    """Map ``auto`` to ``cuda`` when a GPU is visible, else ``cpu``."""
    if device == "auto":
        return "cuda" if torch.cuda.is_available() else "cpu"
    return device


def load_detector(cfg: DemoConfig):
    """
    Build the object-detection pipeline described by ``cfg``.

    With ``allow_local_models`` disabled the checkpoint must be a Hub
    repository id; a local directory of that name is refused rather than
    silently preferred.

    Raises:
        ValueError: If a local checkpoint is given while local models are disabled.
    """
    if not cfg.allow_local_models and os.path.isdir(cfg.model_checkpoint):
        raise ValueError(
            f"'{cfg.model_checkpoint}' is a local directory but allow_local_models is disabled"
        )

    # Fixed thread count for the CPU backend, set before any graph runs
    torch.set_num_threads(cfg.num_threads)

    from transformers import pipeline

    device = resolve_device(cfg.device)
    logger.info("Loading %s pipeline from %s on %s", cfg.task, cfg.model_checkpoint, device)
    detector = pipeline(cfg.task, model=cfg.model_checkpoint, device=device)
    logger.info("Model %s loaded", cfg.model_checkpoint)
    return detector


def _failed(future: Future) -> bool:
    return future.done() and (future.cancelled() or future.exception() is not None)


class SharedHandle:
    """
    Single-flight cache around an expensive factory.

    The first call to ``get`` submits the factory to a worker thread; every
    later call, from any thread or event loop, receives the same future
    until it settles. A successful result is kept for the life of the
    process. A failed one is dropped so the next ``get`` (triggered by the
    next user action) tries again.

    Args:
        factory: Zero-argument callable that builds the handle.
        executor: Optional executor to run the factory on.
    """

    def __init__(self, factory: Callable[[], Any], executor: Optional[ThreadPoolExecutor] = None):
        self._factory = factory
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="model-init")
        self._lock = threading.Lock()
        self._future: Optional[Future] = None

    def get(self) -> Future:
        with self._lock:
            if self._future is None or _failed(self._future):
                self._future = self._executor.submit(self._factory)
            return self._future

    @property
    def loading(self) -> bool:
        future = self._future
        return future is not None and not future.done()

    @property
    def ready(self) -> bool:
        future = self._future
        return future is not None and future.done() and not _failed(future)

    @property
    def error(self) -> Optional[BaseException]:
        future = self._future
        if future is None or not _failed(future):
            return None
        if future.cancelled():
            return CancelledError("model load cancelled")
        return future.exception()
