"""Name-to-constructor registries.

Each role (power model, metric) has one capability interface and one
`Registry` that maps names to constructors:

>>> import scarank.models
>>> from scarank.registry import MODELS
>>> sorted(MODELS.names())
['hamming_weight', 'identity']
"""

__all__ = ["Registry", "MODELS", "METRICS"]

from typing import Callable, Dict, List

from scarank.errors import InvalidArgumentError


class Registry:
    """Registry of constructors for a role (e.g. ``"model"``)."""

    def __init__(self, role: str):
        self.role = role
        self._constructors: Dict[str, Callable] = {}

    def register(self, name: str, constructor: Callable = None):
        """Register `constructor` under `name`.

        Can be used as a class decorator when `constructor` is not given.
        """
        if constructor is None:
            return lambda c: self.register(name, c)
        if name in self._constructors:
            raise InvalidArgumentError(f"A {self.role} named '{name}' already exists.")
        self._constructors[name] = constructor
        return constructor

    def create(self, name: str, *args, **kwargs):
        try:
            constructor = self._constructors[name]
        except KeyError:
            raise InvalidArgumentError(
                f"Unknown {self.role} '{name}', available: {self.names()}."
            ) from None
        return constructor(*args, **kwargs)

    def names(self) -> List[str]:
        return list(self._constructors)

    def __contains__(self, name):
        return name in self._constructors


MODELS = Registry("model")
METRICS = Registry("metric")
