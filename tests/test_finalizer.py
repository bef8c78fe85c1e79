import pytest

from tfworkspace.finalizer import WorkspaceFinalizer


class Boom(Exception):
    pass


class FakeStore:
    def __init__(self, error=None):
        self.error = error
        self.removed = []

    def remove(self, obj):
        if self.error is not None:
            raise self.error
        self.removed.append(obj)


class FakeFinalizer:
    def __init__(self, error=None):
        self.error = error
        self.added = []
        self.removed = []

    def add_finalizer(self, obj):
        if self.error is not None:
            raise self.error
        self.added.append(obj)

    def remove_finalizer(self, obj):
        if self.error is not None:
            raise self.error
        self.removed.append(obj)


def test_add_finalizer_success():
    fin = FakeFinalizer()
    WorkspaceFinalizer(None, fin).add_finalizer("obj")
    assert fin.added == ["obj"]


def test_add_finalizer_failure():
    boom = Boom("errboom")
    with pytest.raises(Boom) as info:
        WorkspaceFinalizer(None, FakeFinalizer(boom)).add_finalizer("obj")
    assert info.value is boom


def test_remove_finalizer_success():
    store = FakeStore()
    fin = FakeFinalizer()
    WorkspaceFinalizer(store, fin).remove_finalizer("obj")
    assert store.removed == ["obj"]
    assert fin.removed == ["obj"]


def test_remove_finalizer_store_removal_fails():
    boom = Boom("errboom")
    fin = FakeFinalizer()
    with pytest.raises(RuntimeError) as info:
        WorkspaceFinalizer(FakeStore(boom), fin).remove_finalizer("obj")
    assert str(info.value) == "cannot remove workspace from the store: errboom"
    assert info.value.__cause__ is boom
    assert fin.removed == []


def test_remove_finalizer_finalizer_fails():
    boom = Boom("errboom")
    store = FakeStore()
    with pytest.raises(Boom) as info:
        WorkspaceFinalizer(store, FakeFinalizer(boom)).remove_finalizer("obj")
    assert info.value is boom
    assert store.removed == ["obj"]