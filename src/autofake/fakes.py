"""Fake objects for abstract types, built on :mod:`unittest.mock`.

A fake is a ``NonCallableMagicMock`` specced on the faked type, so it passes
``isinstance`` checks and rejects attributes the type does not declare.
Creation options are collected on a :class:`FakeOptions` and applied by
:func:`create_fake` in a fixed order: strict guards, then customizations,
then base-method delegation. Delegation is applied last and therefore wins
for every concrete member it touches.

Strict fakes guard properties and annotation-only fields with a
``PropertyMock`` on the fake's own class. Configure one through
``type(fake).name.return_value`` or by replacing it.
"""

from __future__ import annotations

import inspect
import logging
from typing import TYPE_CHECKING, Any, TypeVar
from unittest.mock import DEFAULT, MagicMock, NonCallableMagicMock, PropertyMock

from ._container import InvalidArgumentError, is_protocol, service_type


if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    T = TypeVar("T")

logger = logging.getLogger(__name__)


class StrictCallError(AssertionError):
    """An unconfigured member of a strict fake was called."""

    def __init__(self, fake_type: type, member: str) -> None:
        self.fake_type = fake_type
        self.member = member
        super().__init__(f"Call to unconfigured member {fake_type.__name__}.{member}() of a strict fake")


class FakeOptions:
    """Fluent collector for fake creation options."""

    def __init__(self) -> None:
        self.is_strict = False
        self.delegates_to_base = False
        self.customizations: list[Callable[[Any], None]] = []

    def strict(self) -> FakeOptions:
        """Fail any call to a member that has not been configured."""
        self.is_strict = True
        return self

    def configure_fake(self, action: Callable[[Any], None]) -> FakeOptions:
        """Run `action` on the fake right after it is created."""
        self.customizations.append(action)
        return self

    def calls_base_methods(self) -> FakeOptions:
        """Run the real body of concrete members instead of intercepting them."""
        self.delegates_to_base = True
        return self


def create_fake(token: type[T] | Any, apply_options: Callable[[FakeOptions], None] | None = None) -> T:
    """Create a fake for `token`, a class or a parameterized generic of a class."""
    spec = service_type(token)
    if spec is None:
        msg = f"Cannot fake {token!r}: not a class"
        raise InvalidArgumentError(msg)

    options = FakeOptions()
    if apply_options is not None:
        apply_options(options)

    fake = NonCallableMagicMock(spec=spec)
    fields = list(_annotated_fields(spec))

    if options.is_strict:
        for name in _methods(spec):
            member = getattr(fake, name)
            member.side_effect = _strict_guard(spec, name, member)
        for name in [*_properties(spec), *fields]:
            getter = PropertyMock()
            getter.side_effect = _strict_guard(spec, name, getter)
            # Mocks get a class of their own, so this only affects this fake.
            setattr(type(fake), name, getter)
    else:
        for name in fields:
            setattr(fake, name, MagicMock())

    for action in options.customizations:
        action(fake)

    if options.delegates_to_base:
        _delegate_to_base(fake, spec)

    logger.debug(
        "Created fake for %r (strict=%s, calls_base_methods=%s)",
        token,
        options.is_strict,
        options.delegates_to_base,
    )
    return fake  # type: ignore[return-value]


def _strict_guard(spec: type, name: str, member: Any) -> Callable[..., Any]:
    unconfigured = member.return_value

    def guard(*args: Any, **kwargs: Any) -> Any:
        # Setting a return_value configures the member; replacing side_effect drops the guard.
        if member.return_value is unconfigured:
            raise StrictCallError(spec, name)
        return DEFAULT

    return guard


def _delegate_to_base(fake: NonCallableMagicMock, spec: type) -> None:
    for name, raw in _public_members(spec):
        if _is_abstract(spec, name, raw):
            continue

        if isinstance(raw, property):
            # Mocks get a class of their own, so this only affects this fake.
            setattr(type(fake), name, raw)
        elif _function_of(raw) is not None:
            getattr(fake, name).side_effect = raw.__get__(fake, spec)


def _methods(spec: type) -> Iterator[str]:
    for name, raw in _public_members(spec):
        if _function_of(raw) is not None:
            yield name


def _properties(spec: type) -> Iterator[str]:
    for name, raw in _public_members(spec):
        if isinstance(raw, property):
            yield name


def _annotated_fields(spec: type) -> Iterator[str]:
    """Public data members declared only by annotation, which ``dir()`` does not list."""
    listed = set(dir(spec))
    seen: set[str] = set()
    for klass in spec.__mro__:
        for name in inspect.get_annotations(klass):
            if name.startswith("_") or name in listed or name in seen:
                continue
            seen.add(name)
            yield name


def _public_members(spec: type) -> Iterator[tuple[str, Any]]:
    for name in dir(spec):
        if name.startswith("_"):
            continue
        try:
            yield name, inspect.getattr_static(spec, name)
        except AttributeError:
            continue


def _function_of(raw: Any) -> Callable[..., Any] | None:
    if isinstance(raw, (staticmethod, classmethod)):
        return raw.__func__
    if inspect.isfunction(raw):
        return raw
    return None


def _is_abstract(spec: type, name: str, raw: Any) -> bool:
    if getattr(raw, "__isabstractmethod__", False):
        return True

    # Members declared on a Protocol are stubs, never base implementations.
    owner = next((klass for klass in spec.__mro__ if name in klass.__dict__), None)
    return owner is None or is_protocol(owner)
