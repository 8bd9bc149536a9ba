from __future__ import annotations

import inspect
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ._container import (
    InvalidArgumentError,
    Lifetime,
    Registration,
    Startable,
    is_protocol,
    service_type,
)
from .fakes import FakeOptions, create_fake


if TYPE_CHECKING:
    from collections.abc import Callable

    from ._container import Container, RegistrationAccessor


logger = logging.getLogger(__name__)

# Collection shapes are left to the container's own rules.
_COLLECTION_MODULES = frozenset({"builtins", "collections.abc", "typing"})


@dataclass(frozen=True)
class FakePolicy:
    """How every fallback fake of a session is created."""

    strict: bool = False
    calls_base_methods: bool = False
    configure_fake: Callable[[Any], None] | None = None

    def apply(self, options: FakeOptions) -> None:
        if self.strict:
            options = options.strict()

        if self.configure_fake is not None:
            options = options.configure_fake(self.configure_fake)

        if self.calls_base_methods:
            options.calls_base_methods()


class FakeRegistrationSource:
    """Resolves unknown interfaces and abstract classes to fakes.

    Consulted by the container only when nothing is registered for a token.
    Eligible tokens get a single registration whose fake is created lazily,
    once per resolution scope.
    """

    is_adapter_for_individual_components = False

    def __init__(self, policy: FakePolicy | None = None) -> None:
        self._policy = policy if policy is not None else FakePolicy()

    @property
    def policy(self) -> FakePolicy:
        return self._policy

    def registrations_for(
        self,
        token: Any,
        registration_accessor: RegistrationAccessor,
    ) -> list[Registration]:
        if token is None:
            msg = "`token` must not be None."
            raise InvalidArgumentError(msg)

        if not self.can_fake(token):
            return []

        def make_fake(_resolver: Container, **_overrides: Any) -> object:
            return self.create_fake(token)

        return [Registration(factory=make_fake, impl=None, lifetime=Lifetime.SCOPED)]

    def can_fake(self, token: Any) -> bool:
        tp = service_type(token)
        if tp is None:
            return False

        if not (is_protocol(tp) or inspect.isabstract(tp)):
            return False

        if tp.__module__ in _COLLECTION_MODULES and issubclass(tp, Iterable):
            return False

        return not issubclass(tp, Startable)

    def create_fake(self, token: Any) -> object:
        logger.debug("Faking unregistered %r", token)
        return create_fake(token, self._policy.apply)
