import abc
import unittest
from typing import Protocol, runtime_checkable
from unittest.mock import MagicMock

import pytest

from autofake import Container, create_fake


@runtime_checkable
class RepoProtocol(Protocol):
    def get(self, key: str) -> int: ...


class GoodRepo:
    def get(self, key: str) -> int:
        return 42


class BadRepo:
    # Missing `get`
    def other(self) -> str:
        return "nope"


class TestProtocolConformance(unittest.TestCase):
    cont: Container

    def setUp(self):
        self.cont = Container()

    def test_register_accepts_conforming_class(self):
        self.cont.register(RepoProtocol, GoodRepo)

        assert self.cont.resolve(RepoProtocol).get("k") == 42

    def test_register_rejects_non_conforming_class(self):
        with pytest.raises(TypeError) as ctx:
            self.cont.register(RepoProtocol, BadRepo)

        assert "missing members: get" in str(ctx.value)

    def test_register_instance_rejects_non_conforming_instance(self):
        with pytest.raises(TypeError):
            self.cont.register_instance(RepoProtocol, BadRepo())

    def test_factory_result_is_checked_at_resolution(self):
        self.cont.register(RepoProtocol, factory=lambda _: BadRepo())

        with pytest.raises(TypeError):
            self.cont.resolve(RepoProtocol)

    def test_wrong_arity_is_rejected(self):
        class GetNoArgs:
            def get(self) -> int:
                return 1

        with pytest.raises(TypeError) as ctx:
            self.cont.register(RepoProtocol, GetNoArgs)

        assert "fewer required positional params" in str(ctx.value)

    def test_non_callable_member_is_rejected(self):
        class GetIsNotCallable:
            get = 42

        with pytest.raises(TypeError) as ctx:
            self.cont.register_instance(RepoProtocol, GetIsNotCallable())

        assert "not callable" in str(ctx.value)

    def test_empty_protocol_accepts_any_class(self):
        class EmptyProto(Protocol): ...

        class AnyClass: ...

        self.cont.register(EmptyProto, AnyClass)

        assert isinstance(self.cont.resolve(EmptyProto), AnyClass)

    def test_explicit_subclass_of_protocol_is_accepted_nominally(self):
        class Partial(RepoProtocol):
            pass

        self.cont.register(RepoProtocol, Partial)


class TestMockInstances(unittest.TestCase):
    cont: Container

    def setUp(self):
        self.cont = Container()

    def test_specced_mock_satisfies_protocol(self):
        repo = MagicMock(spec=RepoProtocol)

        self.cont.register_instance(RepoProtocol, repo)

        assert self.cont.resolve(RepoProtocol) is repo

    def test_fake_satisfies_abstract_class(self):
        class Port(abc.ABC):
            @abc.abstractmethod
            def send(self) -> None: ...

        port = create_fake(Port)

        self.cont.register(Port, factory=lambda _: port)

        assert self.cont.resolve(Port) is port


class TestConcreteTokenConstraints(unittest.TestCase):
    cont: Container

    def setUp(self):
        self.cont = Container()

    def test_impl_must_subclass_concrete_token(self):
        class Base: ...

        class NotDerived: ...

        with pytest.raises(TypeError):
            self.cont.register(Base, impl=NotDerived)

    def test_factory_result_must_be_instance_of_token(self):
        class Base: ...

        self.cont.register(Base, factory=lambda _: object())

        with pytest.raises(TypeError):
            self.cont.resolve(Base)

    def test_impl_and_factory_are_mutually_exclusive(self):
        class Base: ...

        with pytest.raises(ValueError):
            self.cont.register(Base, Base, factory=lambda _: Base())

        with pytest.raises(ValueError):
            self.cont.register(Base)


class TestRegisterInstanceReplacement(unittest.TestCase):
    cont: Container

    def setUp(self):
        self.cont = Container()

    def test_register_instance_twice_without_replace_raises_key_error(self):
        class A: ...

        self.cont.register_instance(A, A())

        with pytest.raises(KeyError):
            self.cont.register_instance(A, A())

    def test_register_instance_with_replace_substitutes_instance(self):
        class A: ...

        self.cont.register_instance("a", A())
        second = A()
        self.cont.register_instance("a", second, replace=True)

        assert self.cont.resolve("a") is second
