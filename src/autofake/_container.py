from __future__ import annotations

import contextlib
import inspect
import logging
import threading
import types
import typing
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    ParamSpec,
    Protocol,
    TypeVar,
    get_type_hints,
    overload,
)


logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

    T = TypeVar("T")
    # Parameter spec for factories
    P = ParamSpec("P")

    Token = type[T] | str

    RegistrationAccessor = Callable[[Any], Sequence["Registration"]]


class Lifetime(Enum):
    SINGLETON = "singleton"
    TRANSIENT = "transient"
    SCOPED = "scoped"


@dataclass
class Registration:
    factory: Callable[..., object] | None
    impl: type | None
    lifetime: Lifetime
    cached_instance: object | None = None  # cached singleton


class ResolutionError(RuntimeError):
    pass


class UnregisteredServiceError(ResolutionError):
    """No registration, registration source or auto-wiring rule answers for ``token``."""

    def __init__(self, token: Any) -> None:
        self.token = token
        super().__init__(f"No registration found for token: {token!r}")


class InvalidArgumentError(ValueError):
    pass


class DisposedError(RuntimeError):
    pass


class Startable(ABC):
    """Marker for components activated by :meth:`Container.start`."""

    @abstractmethod
    def start(self) -> None: ...


class RegistrationSource(Protocol):
    """Supplies registrations on demand for tokens nobody registered explicitly.

    Sources are consulted in installation order; the first one returning a
    non-empty sequence wins and its first registration is used.
    """

    is_adapter_for_individual_components: bool

    def registrations_for(
        self,
        token: Any,
        registration_accessor: RegistrationAccessor,
    ) -> Sequence[Registration]: ...


class Container:
    """Minimal DI container.

    - register types, factories or instances
    - resolve with constructor injection
    - lifetimes: singleton / transient / scoped
    - registration sources for unregistered tokens
    - nested scopes with deterministic disposal.
    """

    _parent: Container | None = None

    def __init__(self) -> None:
        self._registrations: dict[Any, Registration] = {}
        self._sources: list[RegistrationSource] = []
        self._scoped_instances: dict[Any, object] = {}
        self._started: set[Any] = set()
        self._disposables = contextlib.ExitStack()
        self._closed = False
        self._lock = threading.RLock()

    @property
    def closed(self) -> bool:
        return self._closed

    @overload
    def register(
        self,
        token: type[T],
        impl: type[T],
        *,
        factory: None = ...,
        lifetime: Lifetime = Lifetime.SINGLETON,
    ) -> None: ...

    @overload
    def register(
        self,
        token: type[T],
        impl: None = ...,
        *,
        factory: Callable[P, T],
        lifetime: Lifetime = Lifetime.SINGLETON,
    ) -> None: ...

    @overload
    def register(
        self,
        token: str,
        impl: type | None = ...,
        *,
        factory: Callable[..., Any] | None = ...,
        lifetime: Lifetime = Lifetime.SINGLETON,
    ) -> None: ...

    def register(
        self,
        token: Token[T],
        impl: type | None = None,
        *,
        factory: Callable[..., Any] | None = None,
        lifetime: Lifetime = Lifetime.SINGLETON,
    ) -> None:
        """Register a concrete type or a factory for a token.

        Example:
          container.register(IFoo, FooImpl)
          container.register("db", factory=create_db, lifetime=Lifetime.SCOPED)

        """
        if token is None:
            msg = "`token` must not be None."
            raise InvalidArgumentError(msg)

        if impl is not None and factory is not None:
            msg = "Provide either `impl` or `factory`, not both."
            raise ValueError(msg)

        if impl is None and factory is None:
            msg = "Either `impl` or `factory` must be provided."
            raise ValueError(msg)

        if impl is not None and inspect.isclass(token):
            self._validate_impl(cls=token, impl=impl)

        with self._lock:
            self._ensure_open()
            self._registrations[token] = Registration(factory=factory, impl=impl, lifetime=lifetime)

    def register_instance(
        self,
        token: Token[T],
        instance: object,
        *,
        replace: bool = False,
    ) -> None:
        """Register a pre-built instance (always singleton, owned by this container)."""
        if token is None:
            msg = "`token` must not be None."
            raise InvalidArgumentError(msg)

        if inspect.isclass(token):
            self._validate_impl(cls=token, impl=instance.__class__)

        with self._lock:
            self._ensure_open()
            if not replace and token in self._registrations:
                msg = f"Token {token!r} is already registered. Pass replace=True to overwrite."
                raise KeyError(msg)
            self._registrations[token] = Registration(
                factory=None,
                impl=None,
                lifetime=Lifetime.SINGLETON,
                cached_instance=instance,
            )
            self._own(instance)

    def register_source(self, source: RegistrationSource) -> None:
        """Install a registration source, consulted after explicit registrations."""
        with self._lock:
            self._ensure_open()
            self._sources.append(source)

    @overload
    def resolve(self, token: type[T], **overrides: Any) -> T: ...

    @overload
    def resolve(self, token: str, **overrides: Any) -> object: ...

    def resolve(self, token: Token[T], **overrides: Any) -> object:
        """Resolve the token to an instance.

        Lookup walks from this container through its parents. The first
        explicit registration or cached scoped instance wins. Otherwise the
        root's registration sources are asked, and as a last resort a
        concrete class token is auto-wired. `overrides` lets you explicitly
        supply constructor args.
        """
        if token is None:
            msg = "`token` must not be None."
            raise InvalidArgumentError(msg)

        with self._lock:
            self._ensure_open()

            node: Container | None = self
            root = self
            while node is not None:
                if token in node._scoped_instances:
                    return node._scoped_instances[token]

                reg = node._registrations.get(token)
                if reg is not None:
                    return self._owner_for(node, reg)._activate(token, reg, overrides)

                root = node
                node = node._parent

            reg = root._registration_from_sources(token)
            if reg is not None:
                return self._owner_for(root, reg)._activate(token, reg, overrides)

            if inspect.isclass(token):
                # No registration found and token is a class type: auto-wire it
                instance = self._construct(token, **overrides)
                self._own(instance)
                return instance

            raise UnregisteredServiceError(token)

    def _owner_for(self, node: Container, reg: Registration) -> Container:
        # Root registrations that are not singletons are shared per resolving scope.
        if node._parent is None and reg.lifetime is not Lifetime.SINGLETON:
            return self
        return node

    def _activate(self, token: Any, reg: Registration, overrides: dict[str, Any]) -> object:
        if reg.lifetime is Lifetime.SINGLETON and reg.cached_instance is not None:
            return reg.cached_instance

        if reg.lifetime is Lifetime.SCOPED and token in self._scoped_instances:
            return self._scoped_instances[token]

        if reg.factory:
            instance = reg.factory(self, **overrides)
        else:
            instance = self._construct(_require_impl(reg.impl), **overrides)

        self._check_instance(token, reg, instance)

        if reg.lifetime is Lifetime.SINGLETON:
            reg.cached_instance = instance
        elif reg.lifetime is Lifetime.SCOPED:
            self._scoped_instances[token] = instance

        self._own(instance)
        return instance

    def _check_instance(self, token: Any, reg: Registration, instance: object) -> None:
        if not inspect.isclass(token):
            return

        if is_protocol(token):
            try:
                self._validate_protocol_impl(proto_cls=token, impl=instance.__class__)
            except TypeError as e:
                msg = f"Resolved instance {type(instance).__name__} does not conform to protocol {token.__name__}"
                raise TypeError(msg) from e

            if _is_runtime_checkable(token) and not isinstance(instance, token):
                msg = f"Resolved instance {type(instance).__name__} does not implement runtime protocol {token.__name__}"
                raise TypeError(msg)

        # impl path was validated with issubclass at register time
        elif reg.factory and not isinstance(instance, token):
            msg = f"Resolved instance {type(instance).__name__} is not an instance of {token.__name__}"
            raise TypeError(msg)

    def _registration_from_sources(self, token: Any) -> Registration | None:
        for source in self._sources:
            registrations = source.registrations_for(token, self._registrations_for)
            if not registrations:
                continue

            reg = registrations[0]
            logger.debug("Registration for %r supplied by %s", token, type(source).__name__)
            if not source.is_adapter_for_individual_components:
                self._registrations[token] = reg
            return reg

        return None

    def _registrations_for(self, token: Any) -> list[Registration]:
        reg = self._registrations.get(token)
        return [reg] if reg is not None else []

    def _own(self, instance: object) -> None:
        # Only types declaring close() are owned; instance-level attributes (mocks) are ignored.
        if callable(getattr(type(instance), "close", None)):
            self._disposables.callback(instance.close)  # type: ignore[attr-defined]

    def _construct(self, cls: type[T], **overrides: Any) -> T:
        if inspect.isabstract(cls) or is_protocol(cls):
            msg = f"Cannot construct abstract type {cls.__name__}; register an implementation for it."
            raise ResolutionError(msg)
        return Constructor(self).construct(cls, **overrides)

    def resolve_param(
        self,
        cls: type[T],
        name: str,
        p: inspect.Parameter,
        bound: inspect.BoundArguments,
        hints: dict[str, Any],
    ) -> Any:
        """Resolving param.

        Resolution precedence:
        1. explicit override
        2. type-based registration
        3. name-based registration
        4. default
        5. error.
        """
        # 0) already explicitly bound
        if name in bound.arguments:
            return bound.arguments[name]

        # 1) type-based
        ann = hints.get(name, inspect.Signature.empty)
        if ann is not inspect.Signature.empty and (self._knows(ann) or _is_injectable_type(ann)):
            try:
                return self.resolve(ann)
            except UnregisteredServiceError as e:
                if e.token != ann:
                    raise

        # 2) name-based
        if self._knows(name):
            return self.resolve(name)

        # 3) default
        if p.default is not inspect.Parameter.empty:
            return p.default

        # 4) error
        ann_repr = getattr(ann, "__name__", repr(ann)) if ann is not inspect.Signature.empty else "no-annotation"
        msg = (
            f"Cannot satisfy constructor parameter '{name}' for {cls.__name__}'. "
            f"No override/registration/default found (annotation: {ann_repr})."
        )
        raise ResolutionError(msg)

    def _knows(self, token: Any) -> bool:
        node: Container | None = self
        while node is not None:
            if token in node._registrations:
                return True
            node = node._parent
        return False

    def create_scope(self, configure: Callable[[Scope], None] | None = None) -> Scope:
        """Create a scope that prefers its own registrations/instances, falls back to parent.

        `configure` runs against the new scope before it is returned; if it
        raises, the scope is closed and the error propagates.
        """
        with self._lock:
            self._ensure_open()
            scope = Scope(self, _from_parent=True)

        if configure is not None:
            try:
                configure(scope)
            except BaseException:
                scope.close()
                raise

        logger.debug("Opened scope %#x (parent %#x)", id(scope), id(self))
        return scope

    def start(self) -> None:
        """Activate every registered Startable component once and call its start()."""
        with self._lock:
            self._ensure_open()
            for token, reg in list(self._registrations.items()):
                if token in self._started:
                    continue

                impl = reg.impl
                if impl is None and reg.cached_instance is not None:
                    impl = reg.cached_instance.__class__
                if impl is None or not issubclass(impl, Startable):
                    continue

                self._started.add(token)
                instance = self.resolve(token)
                logger.debug("Starting %r", token)
                instance.start()  # type: ignore[attr-defined]

    def close(self) -> None:
        """Close every owned instance in reverse creation order. Repeated calls are no-ops."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            logger.debug("Closing %s %#x", type(self).__name__, id(self))
            try:
                self._disposables.close()
            finally:
                self._scoped_instances.clear()

    def _ensure_open(self) -> None:
        if self._closed:
            msg = f"{type(self).__name__} has been closed"
            raise DisposedError(msg)

    def _validate_impl(self, cls: type, impl: type) -> None:
        """Validate that 'impl' implements 'cls' when cls is a class/protocol.

        - For normal classes/ABCs: require issubclass(impl, token).
        - For Protocols: nominal via MRO, otherwise structural conformance.

        Raise ValueError when a non-type cls is passed.
        """
        if not inspect.isclass(cls):
            msg = "Non-type tokens (like strings): cannot validate statically"
            raise ValueError(msg)

        if not is_protocol(cls):
            if not issubclass(impl, cls):
                msg = f"Implementation {impl.__name__} must be a subclass of {cls.__name__}"
                raise TypeError(msg)
            return

        self._validate_protocol_impl(cls, impl)

    def _validate_protocol_impl(self, proto_cls: type, impl: type) -> None:
        if proto_cls in getattr(impl, "__mro__", ()):
            return

        missing: list[str] = []
        mismatches: list[str] = []

        try:
            proto_hints = get_type_hints(proto_cls, include_extras=True)
        except (NameError, TypeError):
            proto_hints = {}

        for name in proto_hints:
            if not name.startswith("_") and not hasattr(impl, name):
                missing.append(name)

        for name, proto_attr in proto_cls.__dict__.items():
            if name.startswith("_") or not inspect.isfunction(proto_attr):
                continue

            impl_attr = getattr(impl, name, None)
            if impl_attr is None:
                missing.append(name)
            elif not callable(impl_attr):
                mismatches.append(f"{name}: not callable on {impl.__name__}")
            else:
                try:
                    proto_arity = _required_positional(inspect.signature(proto_attr))
                    impl_arity = _required_positional(inspect.signature(impl_attr))
                except (TypeError, ValueError):
                    continue
                if impl_arity < proto_arity:
                    mismatches.append(
                        f"{name}: impl has fewer required positional params ({impl_arity}) than protocol ({proto_arity})"
                    )

        if missing or mismatches:
            details = []
            if missing:
                details.append(f"missing members: {', '.join(missing)}")
            if mismatches:
                details.append(f"signature mismatches: {', '.join(mismatches)}")
            msg = (
                f"Implementation {impl.__name__} does not structurally conform to protocol "
                f"{proto_cls.__name__}: {'; '.join(details)}"
            )
            raise TypeError(msg)


class Scope(Container):
    """A scoped container that looks up in itself first, then falls back to its parent.

    The parent is referenced, never owned: closing a scope releases only the
    instances this scope created or was given.
    """

    def __init__(self, parent: Container, *, _from_parent: bool = False) -> None:
        if not _from_parent:
            msg = "Scope instances must be created via Container.create_scope()"
            raise RuntimeError(msg)
        super().__init__()
        self._parent = parent

    @property
    def parent(self) -> Container:
        return typing.cast("Container", self._parent)

    def register_source(self, source: RegistrationSource) -> None:
        msg = "Registration sources can only be installed on the root container"
        raise TypeError(msg)


class ConcreteTypeSource:
    """Registration source for concrete, non-builtin classes that are not registered yet."""

    is_adapter_for_individual_components = False

    def __init__(self, lifetime: Lifetime = Lifetime.SCOPED) -> None:
        self._lifetime = lifetime

    def registrations_for(
        self,
        token: Any,
        registration_accessor: RegistrationAccessor,
    ) -> list[Registration]:
        if token is None:
            msg = "`token` must not be None."
            raise InvalidArgumentError(msg)

        if (
            not inspect.isclass(token)
            or token.__module__ == "builtins"
            or inspect.isabstract(token)
            or is_protocol(token)
            or registration_accessor(token)
        ):
            return []

        return [Registration(factory=None, impl=token, lifetime=self._lifetime)]


class Constructor:
    def __init__(self, resolver: Container) -> None:
        self._resolver = resolver

    def construct(self, cls: type[T], **overrides: Any) -> T:
        if cls.__init__ is object.__init__:  # type: ignore[misc]
            return cls()

        sig = inspect.signature(cls)
        params = sig.parameters

        overrides.pop("self", None)  # never allow passing 'self'
        pos_only = {name for name, p in params.items() if p.kind is p.POSITIONAL_ONLY}

        bound = self._bind_explicit(sig, {k: v for k, v in overrides.items() if k not in pos_only}, cls)
        for name in pos_only & overrides.keys():
            bound.arguments[name] = overrides[name]

        hints = _get_init_type_hints(cls)
        for name, p in params.items():
            if p.kind in (p.VAR_POSITIONAL, p.VAR_KEYWORD) or name in bound.arguments:
                continue
            bound.arguments[name] = self._resolver.resolve_param(cls, name, p, bound, hints)

        args, kwargs = self._materialize_call(params, bound)
        return cls(*args, **kwargs)

    def _materialize_call(
        self, params: Mapping[str, inspect.Parameter], bound: inspect.BoundArguments
    ) -> tuple[list[Any], dict[str, Any]]:
        args: list[Any] = []
        kwargs: dict[str, Any] = {}

        for name, p in params.items():
            if p.kind is p.POSITIONAL_ONLY:
                args.append(bound.arguments[name])
            elif p.kind is p.VAR_POSITIONAL:
                args.extend(bound.arguments.get(name, ()))
            elif p.kind in (p.POSITIONAL_OR_KEYWORD, p.KEYWORD_ONLY):
                kwargs[name] = bound.arguments[name]
            elif p.kind is p.VAR_KEYWORD:
                kwargs.update(bound.arguments.get(name, {}))

        return args, kwargs

    def _bind_explicit(self, sig: inspect.Signature, kw: dict[str, Any], cls: type[T]) -> inspect.BoundArguments:
        try:
            return sig.bind_partial(**kw)
        except TypeError as e:
            msg = f"Overrides don't match {cls.__name__} signature: {e}"
            raise TypeError(msg) from e


if hasattr(typing, "is_protocol"):
    # https://docs.python.org/3/library/typing.html#typing.is_protocol
    def is_protocol(tp: Any) -> bool:
        return inspect.isclass(tp) and typing.is_protocol(tp)

else:

    def is_protocol(tp: Any) -> bool:
        """Detect whether 'tp' is itself a typing.Protocol class (not merely an implementation)."""
        return inspect.isclass(tp) and tp is not Protocol and bool(tp.__dict__.get("_is_protocol", False))


def service_type(token: Any) -> type | None:
    """Return the class a token stands for: the class itself or a parameterized generic's origin."""
    if inspect.isclass(token):
        return token

    origin = typing.get_origin(token)
    if inspect.isclass(origin) and origin is not types.UnionType and typing.get_args(token):
        return origin

    return None


def _require_impl(impl: type | None) -> type:
    if impl is None:
        msg = "Registration has neither a factory nor an implementation"
        raise ResolutionError(msg)
    return impl


def _is_injectable_type(ann: Any) -> bool:
    tp = service_type(ann)
    return tp is not None and tp.__module__ != "builtins"


def _is_runtime_checkable(tp: type) -> bool:
    try:
        isinstance(None, tp)
    except TypeError:
        return False
    else:
        return True


def _required_positional(sig: inspect.Signature) -> int:
    return sum(
        1
        for p in sig.parameters.values()
        if p.name != "self"
        and p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
        and p.default is p.empty
    )


def _get_init_type_hints(cls: type[T]) -> dict[str, Any]:
    try:
        init = inspect.getattr_static(cls, "__init__")
        hints = get_type_hints(init)
    except TypeError:
        hints = {}
    except NameError as exc:
        logger.warning("'%s' name error retrieving %s (%s) type hints", exc.name, cls.__name__, cls.__qualname__)
        hints = {}

    return hints
