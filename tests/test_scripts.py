"""
Tests for the script registry.
"""

import hashlib

import pytest

from resilient_redis import InvalidOperationError, ScriptRegistry
from resilient_redis.scripts import (
    INCR_SCRIPT,
    SCRIPT_INCR,
    SCRIPT_LOCK,
    SCRIPT_MULTI_LOCK,
    register_builtin_scripts,
    register_scripts,
)


class TestScriptRegistry:
    """Test registration and lookup."""

    def test_register_and_get(self):
        registry = ScriptRegistry()
        script = registry.register("add", "return ARGV[1] + ARGV[2]", num_keys=0, num_args=2)
        assert registry.get("add") is script
        assert "add" in registry
        assert len(registry) == 1

    def test_sha_computed_locally(self):
        """The digest matches what SCRIPT LOAD would return."""
        registry = ScriptRegistry()
        source = "return 1"
        script = registry.register("one", source)
        assert script.sha == hashlib.sha1(source.encode()).hexdigest()

    def test_reregistration_replaces(self):
        registry = ScriptRegistry()
        registry.register("s", "return 1")
        registry.register("s", "return 2")
        assert registry.get("s").source == "return 2"
        assert len(registry) == 1

    def test_unknown_name(self):
        assert ScriptRegistry().get("missing") is None

    def test_empty_name_rejected(self):
        with pytest.raises(InvalidOperationError):
            ScriptRegistry().register("", "return 1")

    def test_empty_source_rejected(self):
        with pytest.raises(InvalidOperationError):
            ScriptRegistry().register("blank", "   ")

    def test_negative_arity_rejected(self):
        with pytest.raises(InvalidOperationError):
            ScriptRegistry().register("s", "return 1", num_keys=-1)

    def test_bulk_register(self):
        registry = ScriptRegistry()
        register_scripts(registry, {"a": "return 1", "b": "return 2"})
        assert registry.names() == ["a", "b"]


class TestArity:
    """Test arity checks."""

    def test_matching_arity(self):
        registry = ScriptRegistry()
        script = registry.register("s", "return 1", num_keys=1, num_args=2)
        registry.check_arity(script, ["k"], [1, 2])

    def test_key_count_mismatch(self):
        registry = ScriptRegistry()
        script = registry.register("s", "return 1", num_keys=1)
        with pytest.raises(InvalidOperationError, match="expects 1 key"):
            registry.check_arity(script, ["a", "b"], [])

    def test_arg_count_mismatch(self):
        registry = ScriptRegistry()
        script = registry.register("s", "return 1", num_args=2)
        with pytest.raises(InvalidOperationError, match="expects 2 arg"):
            registry.check_arity(script, [], [1])

    def test_variadic_keys(self):
        """Unset arity accepts any count."""
        registry = ScriptRegistry()
        register_builtin_scripts(registry)
        script = registry.get(SCRIPT_MULTI_LOCK)
        registry.check_arity(script, ["a", "b", "c"], ["token", 1000])


class TestBuiltinScripts:
    """Test the built-in script set."""

    def test_all_registered(self):
        registry = ScriptRegistry()
        register_builtin_scripts(registry)
        assert len(registry) == 12
        assert registry.get(SCRIPT_INCR).source == INCR_SCRIPT

    def test_lock_arity(self):
        registry = ScriptRegistry()
        register_builtin_scripts(registry)
        script = registry.get(SCRIPT_LOCK)
        assert script.num_keys == 1
        assert script.num_args == 2
