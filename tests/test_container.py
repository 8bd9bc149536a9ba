import abc
from typing import Protocol, runtime_checkable

import pytest

from autofake import (
    ConcreteTypeSource,
    Container,
    DisposedError,
    InvalidArgumentError,
    Lifetime,
    Registration,
    ResolutionError,
    Startable,
    UnregisteredServiceError,
)


def test_resolve_unregistered_string_token_raises():
    c = Container()
    with pytest.raises(UnregisteredServiceError) as ctx:
        c.resolve("unknown-token")
    assert ctx.value.token == "unknown-token"


def test_resolve_none_token_raises():
    c = Container()
    with pytest.raises(InvalidArgumentError):
        c.resolve(None)


def test_resolve_register_scoped_impl_derived_with_token_base_class():
    c = Container()

    class Base: ...

    class Derived(Base): ...

    c.register(Base, impl=Derived, lifetime=Lifetime.SCOPED)
    a = c.resolve(Base)
    assert isinstance(a, Derived)
    assert c.resolve(Base) is a


def test_resolve_autowires_recursively_from_annotations():
    c = Container()

    class DB: ...

    class Repo:
        def __init__(self, db: DB):
            self.db = db

    class Service:
        def __init__(self, repo: Repo):
            self.repo = repo

    svc = c.resolve(Service)
    assert isinstance(svc, Service)
    assert isinstance(svc.repo, Repo)
    assert isinstance(svc.repo.db, DB)


def test_resolve_autowires_inherited_constructor():
    c = Container()

    class DB: ...

    class Repo:
        def __init__(self, db: DB):
            self.db = db

    class CachedRepo(Repo): ...

    repo = c.resolve(CachedRepo)
    assert isinstance(repo.db, DB)


def test_resolve_abstract_class_without_registration_raises():
    c = Container()

    class Port(abc.ABC):
        @abc.abstractmethod
        def send(self) -> None: ...

    with pytest.raises(ResolutionError) as ctx:
        c.resolve(Port)
    assert "Port" in str(ctx.value)


def test_resolve_protocol_without_registration_raises():
    c = Container()

    class Port(Protocol):
        def send(self) -> None: ...

    with pytest.raises(ResolutionError):
        c.resolve(Port)


def test_unsatisfied_constructor_param_raises():
    c = Container()

    class ClassWithParams:
        def __init__(self, param: int):
            self.param = param

    with pytest.raises(ResolutionError) as ctx:
        c.resolve(ClassWithParams)
    assert "Cannot satisfy constructor parameter 'param'" in str(ctx.value)


def test_missing_nested_dependency_propagates_unwrapped():
    c = Container()

    class Port(abc.ABC):
        @abc.abstractmethod
        def send(self) -> None: ...

    class Client:
        def __init__(self, port: Port):
            self.port = port

    class Service:
        def __init__(self, client: Client):
            self.client = client

    with pytest.raises(ResolutionError) as ctx:
        c.resolve(Service)
    assert "abstract type Port" in str(ctx.value)


def test_factory_can_receive_container():
    c = Container()

    class DB: ...

    def make_db(cont: Container):
        assert cont is c
        return DB()

    c.register("db", factory=make_db)
    assert isinstance(c.resolve("db"), DB)


def test_resolve_register_factory_overrides_values():
    c = Container()

    def make_value(container: Container, value: int = 0):
        return value

    c.register("value", factory=make_value, lifetime=Lifetime.TRANSIENT)
    assert c.resolve("value", value=42) == 42


def test_resolve_register_factory_runtime_protocol_check_for_conforming_instance_passes():
    c = Container()

    @runtime_checkable
    class RepoProtocol(Protocol):
        def get(self) -> int: ...

    class RepoImpl:
        def get(self) -> int:
            return 1

    c.register(RepoProtocol, factory=lambda _: RepoImpl())
    repo = c.resolve(RepoProtocol)
    assert isinstance(repo, RepoImpl)


def test_resolve_register_factory_non_runtime_protocol_for_non_conforming_raises():
    c = Container()

    class NonRuntimeProtocol(Protocol):
        def do(self) -> None: ...

    c.register(NonRuntimeProtocol, factory=lambda _: object())

    with pytest.raises(TypeError):
        c.resolve(NonRuntimeProtocol)


def test_register_none_token_raises():
    c = Container()

    class Service: ...

    with pytest.raises(InvalidArgumentError):
        c.register(None, Service)


class RecordingSource:
    is_adapter_for_individual_components = False

    def __init__(self, answer):
        self.answer = answer
        self.asked = []

    def registrations_for(self, token, registration_accessor):
        self.asked.append(token)
        if token != "answer":
            return []
        return [Registration(factory=lambda _: self.answer, impl=None, lifetime=Lifetime.SINGLETON)]


def test_registration_source_answers_unregistered_tokens():
    c = Container()
    source = RecordingSource(answer=42)
    c.register_source(source)

    assert c.resolve("answer") == 42
    assert c.resolve("answer") == 42
    # Non-adapter answers are kept in the registry.
    assert source.asked == ["answer"]


def test_adapter_source_is_asked_on_every_resolution():
    c = Container()
    source = RecordingSource(answer=42)
    source.is_adapter_for_individual_components = True
    c.register_source(source)

    c.resolve("answer")
    c.resolve("answer")

    assert source.asked == ["answer", "answer"]


def test_registration_source_is_not_asked_for_registered_tokens():
    c = Container()
    source = RecordingSource(answer=42)
    c.register_source(source)
    c.register_instance("answer", 7)

    assert c.resolve("answer") == 7
    assert source.asked == []


def test_first_answering_source_wins():
    c = Container()
    first = RecordingSource(answer="first")
    second = RecordingSource(answer="second")
    c.register_source(first)
    c.register_source(second)

    assert c.resolve("answer") == "first"
    assert second.asked == []


def test_concrete_type_source_shares_instances_per_scope():
    c = Container()
    c.register_source(ConcreteTypeSource())

    class Service: ...

    scope_a = c.create_scope()
    scope_b = c.create_scope()

    assert scope_a.resolve(Service) is scope_a.resolve(Service)
    assert scope_a.resolve(Service) is not scope_b.resolve(Service)


def test_concrete_type_source_skips_builtins_abstract_and_registered_types():
    source = ConcreteTypeSource()

    class Port(abc.ABC):
        @abc.abstractmethod
        def send(self) -> None: ...

    class Service: ...

    assert source.registrations_for(int, lambda _: []) == []
    assert source.registrations_for(Port, lambda _: []) == []
    assert source.registrations_for("service", lambda _: []) == []
    assert source.registrations_for(Service, lambda _: [object()]) == []
    (registration,) = source.registrations_for(Service, lambda _: [])
    assert registration.impl is Service
    assert registration.lifetime is Lifetime.SCOPED


def test_close_closes_owned_instances_in_reverse_order():
    closed = []

    class Resource:
        def __init__(self, name: str = ""):
            self.name = name

        def close(self) -> None:
            closed.append(self.name)

    c = Container()
    c.register_instance("a", Resource("a"))
    c.register("b", factory=lambda _: Resource("b"))
    c.resolve("b")

    c.close()
    c.close()

    assert closed == ["b", "a"]


def test_close_ignores_instances_without_close_method():
    c = Container()
    c.register_instance("value", object())

    c.close()

    assert c.closed


def test_closed_container_rejects_use():
    c = Container()
    c.close()

    with pytest.raises(DisposedError):
        c.resolve("anything")
    with pytest.raises(DisposedError):
        c.register_instance("value", 1)
    with pytest.raises(DisposedError):
        c.create_scope()


def test_start_starts_startable_registrations_once():
    started = []

    class Worker(Startable):
        def start(self) -> None:
            started.append(self)

    class Plain: ...

    c = Container()
    c.register(Worker, Worker)
    c.register(Plain, Plain)

    c.start()
    c.start()

    assert started == [c.resolve(Worker)]


def test_start_includes_startable_instances():
    class Worker(Startable):
        def __init__(self):
            self.running = False

        def start(self) -> None:
            self.running = True

    worker = Worker()
    c = Container()
    c.register_instance(Worker, worker)

    c.start()

    assert worker.running
