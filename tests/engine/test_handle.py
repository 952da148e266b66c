"""
Tests for ScopedHandle and EngineResources.
"""

import copy
import pickle

import pytest

from llama_chat_lite.config import ContextParams, ModelParams
from llama_chat_lite.engine.handle import EngineResources, ScopedHandle
from llama_chat_lite.errors import ConfigurationError, EngineError
from tests.utils.toy_engine import ToyBackend


class _Resource:
    def __init__(self):
        self.released = 0


def _release(resource):
    resource.released += 1


class TestScopedHandle:
    """Test single-owner handle semantics."""

    def test_release_once(self):
        resource = _Resource()
        handle = ScopedHandle(resource, _release, name="thing")

        handle.release()
        handle.release()

        assert resource.released == 1
        assert handle.released
        assert not handle

    def test_get_after_release(self):
        handle = ScopedHandle(_Resource(), _release)
        handle.release()
        with pytest.raises(EngineError):
            handle.get()

    def test_context_manager_releases(self):
        resource = _Resource()
        with ScopedHandle(resource, _release) as handle:
            assert handle.get() is resource
        assert resource.released == 1

    def test_context_manager_releases_on_error(self):
        resource = _Resource()
        with pytest.raises(KeyError):
            with ScopedHandle(resource, _release):
                raise KeyError("boom")
        assert resource.released == 1

    def test_detach_transfers_ownership(self):
        resource = _Resource()
        handle = ScopedHandle(resource, _release)

        assert handle.detach() is resource
        handle.release()

        assert resource.released == 0
        assert handle.released

    def test_null_resource(self):
        with pytest.raises(EngineError):
            ScopedHandle(None, _release, name="model")

    def test_cannot_copy_or_pickle(self):
        handle = ScopedHandle(_Resource(), _release)
        with pytest.raises(TypeError):
            copy.copy(handle)
        with pytest.raises(TypeError):
            copy.deepcopy(handle)
        with pytest.raises(TypeError):
            pickle.dumps(handle)


class TestEngineResources:
    """Test model/context ownership ordering."""

    def test_uninitialized_access(self):
        resources = EngineResources(ToyBackend())
        assert not resources.has_model
        assert not resources.has_context
        with pytest.raises(ConfigurationError):
            resources.model
        with pytest.raises(ConfigurationError):
            resources.context

    def test_context_requires_model(self):
        resources = EngineResources(ToyBackend())
        with pytest.raises(ConfigurationError):
            resources.create_context(ContextParams())

    def test_close_releases_context_then_model(self):
        order = []
        resources = EngineResources(ToyBackend())
        model = resources.load_model("toy-model", ModelParams())
        context = resources.create_context(ContextParams(context_size=32))
        model.close = lambda: order.append("model")
        context.close = lambda: order.append("context")

        resources.close()

        assert order == ["context", "model"]
        assert not resources.has_model
        resources.close()
        assert order == ["context", "model"]

    def test_new_context_replaces_old(self):
        resources = EngineResources(ToyBackend())
        resources.load_model("toy-model", ModelParams())
        first = resources.create_context(ContextParams(context_size=32))
        second = resources.create_context(ContextParams(context_size=64))

        assert first.closed
        assert not second.closed
        assert resources.context is second

    def test_reload_closes_previous(self):
        backend = ToyBackend()
        resources = EngineResources(backend)
        resources.load_model("toy-model", ModelParams())
        context = resources.create_context(ContextParams())

        resources.load_model("other-model", ModelParams())

        assert context.closed
        assert backend.models[0].closed
        assert not resources.has_context
        assert resources.model is backend.models[1]

    def test_failed_load_leaves_nothing(self):
        backend = ToyBackend()
        resources = EngineResources(backend)
        resources.load_model("toy-model", ModelParams())

        with pytest.raises(ConfigurationError):
            resources.load_model("missing", ModelParams())

        assert backend.models[0].closed
        assert not resources.has_model

    def test_context_manager(self):
        backend = ToyBackend()
        with EngineResources(backend) as resources:
            resources.load_model("toy-model", ModelParams())
        assert backend.models[0].closed

    def test_cannot_copy(self):
        with pytest.raises(TypeError):
            copy.copy(EngineResources(ToyBackend()))
