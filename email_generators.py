"""Adapters for the external email-verification-input generator.

The generator parses the DKIM signature and precomputes the body SHA; none of
that happens here. These adapters only make a generator's output reachable
from Python.
"""

import json
import logging
import importlib
from typing import Any, Callable, Dict, Optional, Union

from errors import GeneratorError


class PrecomputedInputsGenerator:
    """Serve generator output that was produced ahead of time and saved as JSON."""

    def __init__(self, path: str):
        self.path = path

    def __call__(self, email: Union[str, bytes], sha_precompute_selector: Optional[str] = None) -> Dict[str, Any]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except OSError as e:
            raise GeneratorError(f"Cannot read generator output {self.path}: {e}") from e
        except ValueError as e:
            raise GeneratorError(f"Generator output {self.path} is not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise GeneratorError(f"Generator output {self.path} must be a JSON object")

        logging.debug(f"Loaded precomputed generator output from {self.path} "
                      f"(selector {sha_precompute_selector!r})")
        return data


def load_generator(import_path: str) -> Callable[..., Dict[str, Any]]:
    """Resolve 'package.module:attribute' to a generator callable."""
    module_name, sep, attribute = (import_path or "").partition(":")
    if not sep or not module_name or not attribute:
        raise GeneratorError(f"Generator must be given as 'module:attribute', got {import_path!r}")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise GeneratorError(f"Cannot import generator module {module_name}: {e}") from e

    target: Any = module
    for part in attribute.split("."):
        try:
            target = getattr(target, part)
        except AttributeError as e:
            raise GeneratorError(f"{module_name} has no attribute {attribute}") from e

    if not callable(target):
        raise GeneratorError(f"Generator {import_path} is not callable")
    return target
