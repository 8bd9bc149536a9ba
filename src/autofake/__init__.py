"""Auto-faking dependency injection for unit tests.

This package resolves an object under test together with all of its
dependencies: anything registered in the container is built for real, and
every abstract type (ABC or Protocol) nobody registered is supplied by a
``unittest.mock`` based fake. Specific dependencies can be overridden with
a real implementation or a ready-made instance.

Exports:
- `AutoFake`: Session that resolves services, fakes missing abstractions and
  layers overrides in nested scopes torn down newest first.
- `Container`: Lightweight DI container the session is built on.
- `Scope`: Scoped container that resolves within itself first, then falls back
  to its parent.
- `FakeRegistrationSource` / `FakePolicy`: The fallback rule creating fakes.
- `StrictCallError`: Raised by strict fakes on unconfigured calls.
"""

from ._autofake import AutoFake
from ._container import (
    ConcreteTypeSource,
    Container,
    DisposedError,
    InvalidArgumentError,
    Lifetime,
    Registration,
    RegistrationSource,
    ResolutionError,
    Scope,
    Startable,
    UnregisteredServiceError,
)
from ._fake_source import FakePolicy, FakeRegistrationSource
from .fakes import FakeOptions, StrictCallError, create_fake


__all__ = [
    "AutoFake",
    "ConcreteTypeSource",
    "Container",
    "DisposedError",
    "FakeOptions",
    "FakePolicy",
    "FakeRegistrationSource",
    "InvalidArgumentError",
    "Lifetime",
    "Registration",
    "RegistrationSource",
    "ResolutionError",
    "Scope",
    "Startable",
    "StrictCallError",
    "UnregisteredServiceError",
    "create_fake",
]
