from __future__ import annotations

import contextlib
import logging
import weakref
from typing import TYPE_CHECKING, Any, TypeVar

from ._container import (
    ConcreteTypeSource,
    Container,
    DisposedError,
    InvalidArgumentError,
    Lifetime,
    Scope,
)
from ._fake_source import FakePolicy, FakeRegistrationSource


if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    T = TypeVar("T")


logger = logging.getLogger(__name__)


class AutoFake:
    """Resolve anything from a container, faking the abstract types nobody registered.

    Every resolution goes to the current scope. ``provide`` and
    ``provide_instance`` open a child of the current scope holding a single
    binding and make it current, so the binding shadows whatever the
    service resolved to before while everything already resolved stays shared.

    Usage::

        with AutoFake(strict=True) as fake:
            repo = fake.resolve(OrderRepository)
            repo.get.return_value = order
            service = fake.resolve(OrderService)

    Args:
        strict: Unconfigured calls on fakes raise ``StrictCallError``.
        calls_base_methods: Concrete members of faked classes run their real body.
        configure_fake: Called with every freshly created fake.
        container: Container holding real registrations; a new one when omitted.
        configure_action: Called with the container once the fallback rules are
            installed; its registrations take precedence over fakes.
    """

    def __init__(
        self,
        *,
        strict: bool = False,
        calls_base_methods: bool = False,
        configure_fake: Callable[[Any], None] | None = None,
        container: Container | None = None,
        configure_action: Callable[[Container], None] | None = None,
    ) -> None:
        container = container if container is not None else Container()

        container.register_source(ConcreteTypeSource(lifetime=Lifetime.SCOPED))
        container.register_source(
            FakeRegistrationSource(
                FakePolicy(strict=strict, calls_base_methods=calls_base_methods, configure_fake=configure_fake)
            )
        )
        if configure_action is not None:
            configure_action(container)
        container.start()

        self._container = container
        self._scopes: list[Scope] = []
        self._default_scope = container.create_scope()
        self._current: Scope = self._default_scope
        self._finalizer = weakref.finalize(self, _finalize, self._scopes, self._default_scope, container)

    @property
    def container(self) -> Container:
        """The root container."""
        return self._container

    @property
    def closed(self) -> bool:
        """Whether the session has been torn down, explicitly or by garbage collection."""
        return not self._finalizer.alive

    def resolve(self, service: type[T], **overrides: Any) -> T:
        """Resolve `service` from the current scope, faking it when nothing else answers."""
        self._ensure_active()
        _require(service, "service")
        return self._current.resolve(service, **overrides)

    def provide(self, service: type[T], impl: type, **overrides: Any) -> T:
        """Bind `service` to `impl` in a new current scope and resolve it."""
        self._ensure_active()
        _require(service, "service")
        _require(impl, "impl")

        def bind(scope: Scope) -> None:
            scope.register(service, impl, lifetime=Lifetime.SCOPED)

        self._push(self._current.create_scope(bind))
        return self._current.resolve(service, **overrides)

    def provide_instance(self, service: type[T], instance: T) -> T:
        """Bind `service` to `instance` in a new current scope and resolve it.

        The scope owns `instance` from now on: if it has a ``close()`` method
        it is called when the session is closed.
        """
        self._ensure_active()
        _require(service, "service")
        _require(instance, "instance")

        def bind(scope: Scope) -> None:
            scope.register_instance(service, instance)

        self._push(self._current.create_scope(bind))
        return self._current.resolve(service)

    def close(self) -> None:
        """Close override scopes newest first, then the default scope, then the container."""
        if self._finalizer.detach() is not None:
            _teardown(self._scopes, self._default_scope, self._container)

    def __enter__(self) -> AutoFake:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def _push(self, scope: Scope) -> None:
        self._scopes.append(scope)
        self._current = scope
        logger.debug("Pushed override scope %d", len(self._scopes))

    def _ensure_active(self) -> None:
        if not self._finalizer.alive:
            msg = "AutoFake session has been closed"
            raise DisposedError(msg)


def _require(value: object, name: str) -> None:
    if value is None:
        msg = f"`{name}` must not be None."
        raise InvalidArgumentError(msg)


def _teardown(scopes: list[Scope], default_scope: Scope, container: Container) -> None:
    # Every close runs, newest scope first, even when an earlier one raises.
    with contextlib.ExitStack() as stack:
        stack.callback(container.close)
        stack.callback(default_scope.close)
        for scope in scopes:
            stack.callback(scope.close)
        scopes.clear()


def _finalize(scopes: list[Scope], default_scope: Scope, container: Container) -> None:
    try:
        _teardown(scopes, default_scope, container)
    except Exception:
        logger.warning("Error while finalizing an AutoFake session that was never closed", exc_info=True)
